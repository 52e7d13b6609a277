from typing import Callable, List, Optional
import logging

from sqlalchemy.orm import Session

from . import models as dbm
from .crypto import decrypt_token
from .integrations.pos_base import PROVIDERS, PosCredentials

logger = logging.getLogger(__name__)

TokenSource = Callable[[str, str], Optional[str]]


class CredentialStore:
    """Resolves a business's connected POS account and a usable bearer token.

    Token refresh belongs to the OAuth side of the product; when it is wired in,
    pass ``token_source(business_id, provider)`` and it is asked for a fresh
    token on every lookup. Without it the stored (sealed) token is used as is.
    """

    def __init__(self, token_source: Optional[TokenSource] = None):
        self._token_source = token_source

    def _account(self, db: Session, business_id: str) -> Optional[dbm.ConnectedAccount]:
        rows = (
            db.query(dbm.ConnectedAccount)
            .filter(
                dbm.ConnectedAccount.business_id == business_id,
                dbm.ConnectedAccount.status == "connected",
                dbm.ConnectedAccount.provider.in_(PROVIDERS),
            )
            .order_by(dbm.ConnectedAccount.id.desc())
            .all()
        )
        # one provider per business; Clover wins if both were ever connected
        for provider in PROVIDERS:
            for row in rows:
                if row.provider == provider:
                    return row
        return None

    def _token(self, account: dbm.ConnectedAccount) -> Optional[str]:
        if self._token_source is not None:
            return self._token_source(account.business_id, account.provider)
        enc = account.access_token_enc or ""
        if not enc:
            return None
        return decrypt_token(enc) or enc

    def get(self, db: Session, business_id: str) -> Optional[PosCredentials]:
        account = self._account(db, business_id)
        if account is None:
            return None
        token = self._token(account)
        if not token:
            logger.warning("pos_token_missing", extra={"business_id": business_id, "provider": account.provider})
            return None
        return PosCredentials(
            provider=account.provider,
            access_token=token,
            merchant_id=account.merchant_id,
            location_id=account.location_id,
            environment=account.environment or "production",
        )

    def business_for_merchant(self, db: Session, provider: str, merchant_id: str) -> Optional[str]:
        row = (
            db.query(dbm.ConnectedAccount)
            .filter(
                dbm.ConnectedAccount.provider == provider,
                dbm.ConnectedAccount.merchant_id == merchant_id,
                dbm.ConnectedAccount.status == "connected",
            )
            .order_by(dbm.ConnectedAccount.id.desc())
            .first()
        )
        return row.business_id if row else None

    def connected_business_ids(self, db: Session) -> List[str]:
        rows = (
            db.query(dbm.ConnectedAccount.business_id)
            .filter(dbm.ConnectedAccount.status == "connected", dbm.ConnectedAccount.provider.in_(PROVIDERS))
            .distinct()
            .all()
        )
        return sorted(str(r[0]) for r in rows)
