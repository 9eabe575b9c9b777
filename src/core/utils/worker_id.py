"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "", words: int = 3) -> str:
    """Generate a human-readable worker ID, e.g. 'upsert-consumer-brave-golden-tiger'.

    Memorable slugs are easier to follow across log files than hostnames
    or UUIDs when several consumer instances share a group.
    """
    slug = generate_slug(words)
    return f"{prefix}-{slug}" if prefix else slug
