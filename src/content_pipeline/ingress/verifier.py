"""
Webhook ingress verification.

Authenticates a webhook body against the shared secret of its source, then
hands the parsed payload to that source's normalizer. Signatures are checked
on the raw bytes before anything is parsed.
"""

import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from config.config import SourceConfig
from content_pipeline.normalizers import get_normalizer
from content_pipeline.schemas.messages import ContentChangeMessage
from core.errors.exceptions import AuthenticationError, PayloadValidationError
from core.security.webhook_signature import (
    SCHEME_HMAC_SHA256,
    SCHEME_SANITY,
    SignatureFormatError,
    verify_hmac_sha256_signature,
    verify_sanity_signature,
)

logger = logging.getLogger(__name__)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup that works for plain dicts too."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


class IngressVerifier:
    """Authenticates and normalizes webhook deliveries.

    Sources without a secret, disabled sources, and unknown sources all fail
    closed with AuthenticationError.
    """

    def __init__(
        self,
        sources: Mapping[str, SourceConfig],
        clock: Callable[[], float] = time.time,
    ):
        self._sources = {name: cfg for name, cfg in sources.items() if cfg.enabled}
        self._clock = clock

    def knows(self, source: str) -> bool:
        return source in self._sources and get_normalizer(source) is not None

    def authenticate(self, source: str, headers: Mapping[str, str], body: bytes) -> None:
        source_config = self._sources.get(source)
        if source_config is None or not source_config.secret:
            raise AuthenticationError("Source is not configured for webhooks", source=source)

        header_value = _header(headers, source_config.signature_header)
        try:
            if source_config.signature_scheme == SCHEME_SANITY:
                tolerance = source_config.timestamp_tolerance_seconds or None
                valid = verify_sanity_signature(
                    body,
                    header_value,
                    source_config.secret,
                    tolerance_seconds=tolerance,
                    now=self._clock(),
                )
            elif source_config.signature_scheme == SCHEME_HMAC_SHA256:
                valid = verify_hmac_sha256_signature(body, header_value, source_config.secret)
            else:
                raise AuthenticationError(
                    f"Unsupported signature scheme '{source_config.signature_scheme}'",
                    source=source,
                )
        except SignatureFormatError as e:
            raise AuthenticationError("Malformed signature header", source=source, cause=e) from e

        if not valid:
            raise AuthenticationError(
                "Missing or invalid signature" if header_value else "Missing signature header",
                source=source,
            )

    @staticmethod
    def parse_body(source: str, body: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PayloadValidationError("Body is not valid JSON", source=source, cause=e) from e
        if not isinstance(payload, dict):
            raise PayloadValidationError("Body must be a JSON object", source=source)
        return payload

    def verify(self, source: str, headers: Mapping[str, str], body: bytes) -> ContentChangeMessage:
        """Authenticate the raw body, parse it and normalize it.

        Raises:
            AuthenticationError: unknown source, missing secret, bad signature
            PayloadValidationError: not JSON, not an object, or no identity
        """
        self.authenticate(source, headers, body)
        payload = self.parse_body(source, body)

        normalizer = get_normalizer(source)
        if normalizer is None:
            raise AuthenticationError("No normalizer registered for source", source=source)

        message = normalizer.normalize(payload)
        logger.debug(
            "Webhook verified",
            extra={
                "source": source,
                "content_id": message.content_id,
                "updated_at": message.updated_at,
            },
        )
        return message
