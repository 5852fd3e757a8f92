import base64
import json
from functools import lru_cache
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


@lru_cache(maxsize=8)
def _derive_key(secret: str, salt: Optional[bytes] = None) -> bytes:
    """
    Derive the vault authority signing key from a configured secret using PBKDF2-HMAC.
    The salt is static so every process signing with the same secret agrees on the key.
    """
    if salt is None:
        salt = b"smarttour-vault-authority"
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt, iterations=390000
    )
    return kdf.derive(secret.encode("utf-8"))


def canonical_json(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def sign_payload(payload: Dict[str, Any], secret: str) -> str:
    """Return a urlsafe base64 HMAC-SHA256 signature over the canonical JSON payload."""
    h = HMAC(_derive_key(secret), hashes.SHA256())
    h.update(canonical_json(payload))
    return base64.urlsafe_b64encode(h.finalize()).decode("utf-8")


def mask_address(address: str) -> str:
    """
    Return a masked wallet address keeping the prefix and last 4 characters (e.g., 0x12...abcd).
    """
    if len(address) <= 10:
        return address
    return f"{address[:4]}...{address[-4:]}"
