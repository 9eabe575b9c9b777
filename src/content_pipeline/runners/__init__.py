"""Worker runners used by the content_pipeline CLI."""
