"""Security helpers package (signed URLs, gateway authentication).

Exposes the HMAC URL signer used by the URL broker and the signature check
used by the signed download route.
"""

from .signed_media import HmacUrlSigner, signer_from_config, verify_signature

__all__ = [
    "HmacUrlSigner",
    "signer_from_config",
    "verify_signature",
]
