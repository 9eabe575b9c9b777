"""Webhook ingress: signature verification, normalization and publishing."""

from content_pipeline.ingress.server import WebhookIngressApp, WebhookIngressWorker
from content_pipeline.ingress.verifier import IngressVerifier

__all__ = [
    "IngressVerifier",
    "WebhookIngressApp",
    "WebhookIngressWorker",
]
