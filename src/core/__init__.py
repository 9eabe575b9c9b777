"""
Core library: reusable, infrastructure-agnostic components.

Modules:
    errors      - Exception hierarchy and error classification
    logging     - Structured JSON logging with context propagation
    resilience  - Retry with backoff
    security    - Webhook signature verification
    utils       - JSON serialization, worker ids

Design Principles:
    - No dependencies on the content store or queue implementations
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory, ErrorClassifier

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
]
