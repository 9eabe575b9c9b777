"""
Content pipeline: webhook-driven content sync into a canonical store.

Subpackages:
    common       - Shared Kafka infrastructure (producer, batch consumer, DLQ, health, metrics)
    schemas      - Change message and canonical record models
    normalizers  - Per-source mapping from upstream payloads to change messages
    ingress      - Webhook signature verification and HTTP endpoint
    consumer     - Idempotent, conflict-resolved upsert into the store
    store        - Canonical store (in-memory and PostgreSQL)
    cache        - Best-effort TTL read cache
    gateway      - Read path with public/preview routing
    backfill     - GraphQL delta poller feeding the same topic
    runners      - Worker orchestration and lifecycle management

Architecture:
    POST /webhooks/{source} → IngressVerifier → Normalizer → content.changes
        → UpsertWorker → ContentStore(primary) ⇢ replica
    GET /content/... → ReadGateway → cache → replica   (public)
                                   → primary           (preview)
                        (on permanent failure)
    content.changes.dlq ← UpsertWorker

Dependencies:
    - core.*: Reusable components (errors, logging, retry, signatures)
    - aiokafka: Message transport
    - aiohttp: HTTP servers and GraphQL client
    - psycopg / psycopg_pool: PostgreSQL store
    - pydantic: Message schema validation
"""

__version__ = "0.1.0"
