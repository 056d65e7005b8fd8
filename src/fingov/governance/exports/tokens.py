"""Download token issuance and comparison.

Tokens are random URL-safe strings. When a signing secret is configured
the token also carries an HMAC over the export id, nonce and expiry, so a
token copied onto a different download fails verification.
"""

import base64
import hashlib
import hmac
import secrets


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def tokens_match(stored: str | None, presented: str | None) -> bool:
    """Constant-time token comparison. Missing tokens never match."""
    if not stored or not presented:
        return False
    return secrets.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))


class DownloadTokenIssuer:
    """Issues and verifies download tokens."""

    def __init__(self, secret: str | None = None, nonce_bytes: int = 32):
        self._secret = secret.encode("utf-8") if secret else None
        self.nonce_bytes = nonce_bytes

    @property
    def signed(self) -> bool:
        return self._secret is not None

    def _signature(self, export_id: str, nonce: str, expires_at: int) -> str:
        message = f"{export_id}.{nonce}.{expires_at}".encode()
        return _b64(hmac.new(self._secret, message, hashlib.sha256).digest())

    def issue(self, export_id: str, expires_at: int) -> str:
        nonce = secrets.token_urlsafe(self.nonce_bytes)
        if self._secret is None:
            return nonce
        return f"{nonce}.{self._signature(export_id, nonce, expires_at)}"

    def verify(self, token: str, export_id: str, expires_at: int) -> bool:
        """Check the token's signature. Unsigned issuers accept any token."""
        if self._secret is None:
            return True
        nonce, _, signature = token.rpartition(".")
        if not nonce or not signature:
            return False
        expected = self._signature(export_id, nonce, expires_at)
        return hmac.compare_digest(expected, signature)
