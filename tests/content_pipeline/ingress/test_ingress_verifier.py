"""Tests for IngressVerifier: authentication, parsing and normalization."""

import json

import pytest

from config.config import SourceConfig
from content_pipeline.ingress.verifier import IngressVerifier
from core.errors.exceptions import AuthenticationError, PayloadValidationError
from core.security.webhook_signature import sign_hmac_sha256, sign_sanity

SANITY_SECRET = "sanity-secret"
WP_SECRET = "wp-secret"
NOW = 1_700_000_000.0


def _sources(**overrides):
    sources = {
        "sanity": SourceConfig(
            name="sanity",
            secret=SANITY_SECRET,
            signature_scheme="sanity",
            signature_header="sanity-webhook-signature",
            timestamp_tolerance_seconds=300,
        ),
        "wordpress": SourceConfig(
            name="wordpress",
            secret=WP_SECRET,
            signature_scheme="hmac-sha256",
            signature_header="X-Signature",
        ),
    }
    sources.update(overrides)
    return sources


def _sanity_body(**overrides) -> bytes:
    doc = {
        "_id": "abc",
        "_type": "article",
        "_updatedAt": "2024-05-01T10:00:00Z",
        "slug": {"current": "hello"},
        "title": "Hello",
    }
    doc.update(overrides)
    return json.dumps(doc).encode()


def _sanity_headers(body: bytes, secret: str = SANITY_SECRET, at: float = NOW) -> dict:
    return {"sanity-webhook-signature": sign_sanity(secret, body, timestamp_ms=int(at * 1000))}


@pytest.fixture
def verifier():
    return IngressVerifier(_sources(), clock=lambda: NOW)


class TestAuthenticate:

    def test_valid_sanity_signature(self, verifier):
        body = _sanity_body()
        verifier.authenticate("sanity", _sanity_headers(body), body)

    def test_header_lookup_is_case_insensitive(self, verifier):
        body = _sanity_body()
        headers = {"Sanity-Webhook-Signature": _sanity_headers(body)["sanity-webhook-signature"]}
        verifier.authenticate("sanity", headers, body)

    def test_missing_signature(self, verifier):
        with pytest.raises(AuthenticationError, match="Missing signature"):
            verifier.authenticate("sanity", {}, _sanity_body())

    def test_wrong_secret(self, verifier):
        body = _sanity_body()
        with pytest.raises(AuthenticationError):
            verifier.authenticate("sanity", _sanity_headers(body, secret="nope"), body)

    def test_stale_timestamp_rejected(self, verifier):
        body = _sanity_body()
        with pytest.raises(AuthenticationError):
            verifier.authenticate("sanity", _sanity_headers(body, at=NOW - 3600), body)

    def test_zero_tolerance_disables_timestamp_check(self):
        sources = _sources()
        sources["sanity"].timestamp_tolerance_seconds = 0
        body = _sanity_body()
        IngressVerifier(sources, clock=lambda: NOW).authenticate(
            "sanity", _sanity_headers(body, at=NOW - 86400), body
        )

    def test_malformed_header_is_auth_error(self, verifier):
        with pytest.raises(AuthenticationError, match="Malformed"):
            verifier.authenticate("sanity", {"sanity-webhook-signature": "garbage"}, b"{}")

    @pytest.mark.parametrize(
        ("source", "headers"),
        [
            ("sanity", {"sanity-webhook-signature": "t=1,v1=\u00e9"}),
            ("wordpress", {"X-Signature": "sha256=\u00e9abc"}),
        ],
    )
    def test_non_ascii_signature_is_auth_error(self, verifier, source, headers):
        with pytest.raises(AuthenticationError, match="Malformed") as exc_info:
            verifier.authenticate(source, headers, b"{}")
        assert exc_info.value.source == source

    def test_hmac_scheme(self, verifier):
        body = b'{"databaseId": 1}'
        verifier.authenticate("wordpress", {"X-Signature": sign_hmac_sha256(WP_SECRET, body)}, body)

    def test_source_without_secret_fails_closed(self):
        sources = _sources(sanity=SourceConfig(name="sanity", secret=""))
        body = _sanity_body()
        with pytest.raises(AuthenticationError):
            IngressVerifier(sources).authenticate("sanity", _sanity_headers(body, secret=""), body)

    def test_disabled_source_fails_closed(self):
        sources = _sources(sanity=SourceConfig(name="sanity", secret=SANITY_SECRET, enabled=False))
        verifier = IngressVerifier(sources, clock=lambda: NOW)
        body = _sanity_body()
        assert not verifier.knows("sanity")
        with pytest.raises(AuthenticationError):
            verifier.authenticate("sanity", _sanity_headers(body), body)

    def test_unknown_source(self, verifier):
        assert not verifier.knows("contentful")
        with pytest.raises(AuthenticationError):
            verifier.authenticate("contentful", {}, b"{}")


class TestVerify:

    def test_returns_normalized_message(self, verifier):
        body = _sanity_body()
        message = verifier.verify("sanity", _sanity_headers(body), body)
        assert message.content_id == "sanity:abc"
        assert message.slug == "hello"

    def test_signature_checked_before_parsing(self, verifier):
        with pytest.raises(AuthenticationError):
            verifier.verify("sanity", {}, b"not json")

    def test_invalid_json(self, verifier):
        body = b"not json"
        with pytest.raises(PayloadValidationError):
            verifier.verify("sanity", _sanity_headers(body), body)

    def test_non_object_json(self, verifier):
        body = b"[1, 2]"
        with pytest.raises(PayloadValidationError):
            verifier.verify("sanity", _sanity_headers(body), body)

    def test_payload_without_identity(self, verifier):
        body = json.dumps({"_type": "article"}).encode()
        with pytest.raises(PayloadValidationError):
            verifier.verify("sanity", _sanity_headers(body), body)
