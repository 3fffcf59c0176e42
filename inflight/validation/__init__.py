# inflight/validation/__init__.py
"""Input validation for identifiers crossing the tool, HTTP and CLI boundaries."""

from inflight.validation.sanitize import parse_item_type, sanitize_item_id, sanitize_job_id

__all__ = ["sanitize_job_id", "sanitize_item_id", "parse_item_type"]
