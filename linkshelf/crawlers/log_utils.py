"""Redaction of secrets that user-supplied URLs and upstream errors can carry."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[redacted]"

# user:password@ in link URLs
_URL_CREDENTIALS = re.compile(r"(?i)(https?://)[^/\s:@]+:[^/\s@]+@")
# token-like query parameters, e.g. ?access_token=... or &api_key=...
_QUERY_SECRETS = re.compile(r"(?i)([?&](?:access_token|token|api_key|apikey|key|sig|signature)=)[^&#\s]+")
# GitHub token echoed back in an Authorization header
_BEARER = re.compile(r"(?i)((?:bearer|token)\s+)(?:gh[pousr]_|github_pat_)[A-Za-z0-9_]+")


def redact_secrets(text: str) -> str:
    """Strip URL credentials, token query parameters and GitHub tokens from text."""
    text = _URL_CREDENTIALS.sub(rf"\1{REDACTED}@", text)
    text = _QUERY_SECRETS.sub(rf"\1{REDACTED}", text)
    return _BEARER.sub(rf"\1{REDACTED}", text)


def sanitize_log_extra(**kwargs: Any) -> dict[str, Any]:
    """Build an `extra=` payload, redacting string values."""
    return {key: redact_secrets(value) if isinstance(value, str) else value for key, value in kwargs.items()}
