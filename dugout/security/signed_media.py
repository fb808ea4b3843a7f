"""Short-lived signed URLs for private blobs.

Design goals:
- Prevent URL guessing/snooping with HMAC signatures and expiry timestamps
- Address blobs by storage ref; the download route re-checks the ref stays
  inside the blob root

Contract:
- Token covers: blob ref and expiry epoch
- Signature scheme: HMAC-SHA256(secret, f"{ref}:{exp}") -> hex
- URL shape: {MEDIA_BASE_URL}/api/media/signed/<ref>?e=<exp>&sig=<hex>

The signer only knows how to sign for a given TTL. TTL ceilings per URL
kind and caching live in :mod:`dugout.url_broker`, the only caller.
"""
from __future__ import annotations

import hmac
import time
from collections.abc import Callable
from hashlib import sha256
from urllib.parse import quote, urlencode

from flask import current_app

SIGNED_MEDIA_PATH = "/api/media/signed/"


def _secret() -> str:
    # Prefer dedicated signing key; fallback to Flask SECRET_KEY
    key = current_app.config.get("MEDIA_SIGNING_KEY") or current_app.config.get(
        "SECRET_KEY"
    )
    if not key:
        raise RuntimeError("No signing key configured")
    return str(key)


def _canonical_string(ref: str, exp: int) -> str:
    return f"{ref}:{int(exp)}"


def compute_signature(secret: str, ref: str, exp: int) -> str:
    msg = _canonical_string(ref, exp).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, sha256).hexdigest()


def verify_signature(
    ref: str, exp, sig: str | None, secret: str | None = None, now: float | None = None
) -> bool:
    """Check the signature and that the URL has not expired.

    Returns False for any malformed input instead of raising.
    """
    try:
        exp = int(exp)
    except (TypeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    if exp <= current:
        return False
    expected = compute_signature(secret or _secret(), ref, exp)
    # Constant-time compare
    return hmac.compare_digest(str(sig or ""), expected)


class HmacUrlSigner:
    """URL-signing collaborator backed by an HMAC secret.

    Args:
        secret: Signing key
        base_url: Scheme and host prefixed to the signed path ("" for relative URLs)
        clock: Returns the current epoch seconds (injectable for tests)
    """

    def __init__(self, secret: str, base_url: str = "", clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = str(secret)
        self.base_url = (base_url or "").rstrip("/")
        self.clock = clock

    def __repr__(self) -> str:
        return f"<HmacUrlSigner base_url={self.base_url!r}>"

    def sign(self, ref: str, ttl: int) -> str:
        """Return a URL for ``ref`` valid for ``ttl`` seconds from now."""
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        exp = int(self.clock()) + int(ttl)
        sig = compute_signature(self._secret, ref, exp)
        query = urlencode({"e": exp, "sig": sig})
        return f"{self.base_url}{SIGNED_MEDIA_PATH}{quote(ref)}?{query}"

    def verify(self, ref: str, exp, sig: str | None) -> bool:
        return verify_signature(ref, exp, sig, secret=self._secret, now=self.clock())


def signer_from_config(app) -> HmacUrlSigner:
    secret = app.config.get("MEDIA_SIGNING_KEY") or app.config.get("SECRET_KEY")
    return HmacUrlSigner(secret, base_url=app.config.get("MEDIA_BASE_URL", ""))
