"""Classify remote status documents into workflow error kinds.

The remote engine's error reporting has no stable shape, so this is a coarse
case-insensitive scan of the whole serialized document rather than
field-level parsing. First matching rule wins.
"""

import json
import re
from typing import Any

from flowrelay.core.models.status import (
    NO_ERROR,
    ClassifiedError,
    ErrorKind,
    Severity,
    StatusDocument,
)

_RULES: tuple[tuple[re.Pattern[str], ClassifiedError], ...] = (
    (
        re.compile(r"exit code:\s*-?0*[1-9]"),
        ClassifiedError(
            kind=ErrorKind.workflow_error,
            message="Remote workflow failed (nonzero exit code)",
            severity=Severity.critical,
        ),
    ),
    (
        re.compile(r"process finished with an error"),
        ClassifiedError(
            kind=ErrorKind.process_error,
            message="Remote process finished with an error",
            severity=Severity.critical,
        ),
    ),
    (
        re.compile(r"timeout|timed out"),
        ClassifiedError(
            kind=ErrorKind.remote_timeout,
            message="Remote engine reported a timeout",
            severity=Severity.warning,
        ),
    ),
)


def _serialize(document: Any) -> str:
    if isinstance(document, StatusDocument):
        document = document.raw
    if not document:
        return ""
    try:
        return json.dumps(document, ensure_ascii=False, default=str).lower()
    except (TypeError, ValueError):
        return str(document).lower()


def classify(document: Any) -> ClassifiedError:
    """Map a status document (or raw mapping) to a ClassifiedError. Never raises."""
    text = _serialize(document)
    if not text:
        return NO_ERROR
    for pattern, result in _RULES:
        if pattern.search(text):
            return result
    return NO_ERROR
