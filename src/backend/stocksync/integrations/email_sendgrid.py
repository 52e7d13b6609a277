from typing import Dict, Any, Optional
import html
import os
import httpx
from ..cache import breaker_allow, breaker_on_result


def _as_html(text: str) -> str:
    return "<p>" + "<br>".join(html.escape(line) for line in text.splitlines()) + "</p>"


def sendgrid_send_email(to_email: str, subject: str, body_text: str, body_html: Optional[str] = None) -> Dict[str, Any]:
    api_key = os.getenv("SENDGRID_API_KEY", "")
    from_email = os.getenv("SENDGRID_FROM_EMAIL", "")
    if not (api_key and from_email and to_email):
        raise RuntimeError("sendgrid not configured")
    url = "https://api.sendgrid.com/v3/mail/send"
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [
            {"type": "text/plain", "value": body_text},
            {"type": "text/html", "value": body_html or _as_html(body_text)},
        ],
    }
    name = "sendgrid_send"
    if not breaker_allow(name):
        raise RuntimeError("sendgrid circuit open")
    ok = False
    try:
        with httpx.Client(timeout=20) as client:
            r = client.post(url, headers=headers, json=payload)
            if r.status_code not in (200, 202):
                r.raise_for_status()
            ok = True
            return {"status": "queued", "provider_id": r.headers.get("X-Message-Id", "")}
    finally:
        breaker_on_result(name, ok)
