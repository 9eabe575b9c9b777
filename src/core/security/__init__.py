"""
Security module.

Provides webhook signature verification for inbound content sources.
"""

from core.security.webhook_signature import (
    SCHEME_HMAC_SHA256,
    SCHEME_SANITY,
    SUPPORTED_SCHEMES,
    SignatureFormatError,
    sign_hmac_sha256,
    sign_sanity,
    verify_hmac_sha256_signature,
    verify_sanity_signature,
)

__all__ = [
    "SCHEME_SANITY",
    "SCHEME_HMAC_SHA256",
    "SUPPORTED_SCHEMES",
    "SignatureFormatError",
    "sign_sanity",
    "sign_hmac_sha256",
    "verify_sanity_signature",
    "verify_hmac_sha256_signature",
]
