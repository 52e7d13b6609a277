import os
import base64
import hashlib
from typing import Optional
from nacl import secret, utils
from nacl.exceptions import CryptoError


def _box() -> secret.SecretBox:
    # 32-byte key derived from SECRET_KEY via SHA-256
    key = hashlib.sha256(os.getenv("SECRET_KEY", "dev_secret_key_change_me").encode("utf-8")).digest()
    return secret.SecretBox(key)


def encrypt_token(plain: str) -> str:
    """Seal a POS access token for storage in connected_accounts.access_token_enc."""
    nonce = utils.random(secret.SecretBox.NONCE_SIZE)
    sealed = _box().encrypt(plain.encode("utf-8"), nonce)
    return base64.b64encode(sealed).decode("utf-8")


def decrypt_token(enc_b64: str) -> Optional[str]:
    """Open a sealed token; None when the value is not one of ours (e.g. a legacy plaintext row)."""
    try:
        raw = base64.b64decode(enc_b64, validate=True)
        return _box().decrypt(raw).decode("utf-8")
    except (ValueError, CryptoError):
        return None
