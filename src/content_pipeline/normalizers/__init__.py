"""Source normalizers.

Importing this package registers the built-in sanity and wordpress variants.
"""

from content_pipeline.normalizers import sanity, wordpress  # noqa: F401
from content_pipeline.normalizers.base import (
    SourceNormalizer,
    get_normalizer,
    normalize,
    register_normalizer,
    registered_sources,
    resolve_document,
)
from content_pipeline.normalizers.sanity import SanityNormalizer, render_portable_text
from content_pipeline.normalizers.wordpress import WordPressNormalizer

__all__ = [
    "SanityNormalizer",
    "SourceNormalizer",
    "WordPressNormalizer",
    "get_normalizer",
    "normalize",
    "register_normalizer",
    "registered_sources",
    "render_portable_text",
    "resolve_document",
]
