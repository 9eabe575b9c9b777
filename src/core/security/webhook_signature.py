"""
Webhook signature schemes.

Two HMAC-SHA256 schemes are supported, both computed over the raw request
body before any parsing:

- ``sanity``: header value ``t=<unix ms>,v1=<base64url digest>`` where the
  digest covers ``"<t>." + body``.
- ``hmac-sha256``: header value is the hex digest of the body, optionally
  prefixed with ``sha256=``.

All comparisons go through hmac.compare_digest.
"""

import base64
import hashlib
import hmac
import time

SCHEME_SANITY = "sanity"
SCHEME_HMAC_SHA256 = "hmac-sha256"

SUPPORTED_SCHEMES = (SCHEME_SANITY, SCHEME_HMAC_SHA256)


class SignatureFormatError(ValueError):
    """Signature header could not be parsed."""

    pass


def _digest(secret: str, payload: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _signature_bytes(value: str) -> bytes:
    """Encode a header signature for compare_digest, which only takes ASCII str."""
    try:
        return value.encode("ascii")
    except UnicodeEncodeError as e:
        raise SignatureFormatError("Signature contains non-ASCII characters") from e


def _matches(candidate: str, expected: str) -> bool:
    return hmac.compare_digest(_signature_bytes(candidate), expected.encode("ascii"))


# =============================================================================
# Sanity-style timestamped signatures
# =============================================================================


def parse_sanity_header(header: str) -> tuple[int, list[str]]:
    """
    Split a ``t=...,v1=...`` header into its timestamp and v1 signatures.

    Raises:
        SignatureFormatError: if the header is not ASCII, or the timestamp or
            every v1 entry is missing
    """
    if not header.isascii():
        raise SignatureFormatError("Signature contains non-ASCII characters")
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as e:
                raise SignatureFormatError(f"Invalid signature timestamp: {value!r}") from e
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None:
        raise SignatureFormatError("Signature header has no timestamp")
    if not signatures:
        raise SignatureFormatError("Signature header has no v1 signature")
    return timestamp, signatures


def sign_sanity(secret: str, body: bytes, timestamp_ms: int | None = None) -> str:
    """Build a header value for ``body`` (used by senders and tests)."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    digest = _digest(secret, f"{timestamp_ms}.".encode() + body)
    return f"t={timestamp_ms},v1={_b64url(digest)}"


def verify_sanity_signature(
    body: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: float | None = None,
    now: float | None = None,
) -> bool:
    """
    Verify a Sanity-style webhook signature.

    Args:
        body: Raw request body
        header: Signature header value
        secret: Shared secret for this source
        tolerance_seconds: Reject timestamps older than this (None disables)
        now: Current unix time in seconds (injectable for tests)

    Raises:
        SignatureFormatError: if the header is present but unparseable or not ASCII
    """
    if not header:
        return False

    timestamp_ms, candidates = parse_sanity_header(header)

    if tolerance_seconds is not None:
        current = time.time() if now is None else now
        if abs(current - timestamp_ms / 1000) > tolerance_seconds:
            return False

    expected = _b64url(_digest(secret, f"{timestamp_ms}.".encode() + body))
    return any(_matches(candidate, expected) for candidate in candidates)


# =============================================================================
# Plain hex HMAC signatures
# =============================================================================


def sign_hmac_sha256(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``body`` with the ``sha256=`` prefix."""
    return "sha256=" + _digest(secret, body).hex()


def verify_hmac_sha256_signature(body: bytes, header: str | None, secret: str) -> bool:
    """Verify a hex HMAC-SHA256 signature, with or without ``sha256=`` prefix.

    Raises:
        SignatureFormatError: if the header is not ASCII
    """
    if not header:
        return False

    candidate = header.strip()
    if candidate.lower().startswith("sha256="):
        candidate = candidate[len("sha256="):]

    expected = _digest(secret, body).hex()
    return _matches(candidate.lower(), expected)


__all__ = [
    "SCHEME_SANITY",
    "SCHEME_HMAC_SHA256",
    "SUPPORTED_SCHEMES",
    "SignatureFormatError",
    "parse_sanity_header",
    "sign_sanity",
    "verify_sanity_signature",
    "sign_hmac_sha256",
    "verify_hmac_sha256_signature",
]
