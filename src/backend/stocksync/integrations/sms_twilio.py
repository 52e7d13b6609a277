import os
from typing import Dict, Any, Optional
import httpx
from ..cache import breaker_allow, breaker_on_result


def twilio_send_sms(
    to_e164: str,
    body: str,
    from_number: Optional[str] = None,
    account_sid: Optional[str] = None,
    auth_token: Optional[str] = None,
) -> Dict[str, Any]:
    account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID", "")
    auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN", "")
    from_number = from_number or os.getenv("TWILIO_FROM_NUMBER", "")
    if not (account_sid and auth_token and from_number and to_e164):
        raise RuntimeError("twilio not configured")
    name = "twilio_send"
    if not breaker_allow(name):
        raise RuntimeError("twilio circuit open")
    url = f"https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"
    data = {"To": to_e164, "From": from_number, "Body": body}
    ok = False
    try:
        with httpx.Client(timeout=20) as client:
            r = client.post(url, data=data, auth=(account_sid, auth_token))
            r.raise_for_status()
            j = r.json()
            ok = True
            return {"status": j.get("status", "queued"), "provider_id": j.get("sid", "")}
    finally:
        breaker_on_result(name, ok)
