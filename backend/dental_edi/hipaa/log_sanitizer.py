"""
PHI Log Sanitization Filter: strips Protected Health Information from log output.

EDI payloads are full of PHI: subscriber names, member IDs, dates of birth.
Clearinghouse request/response bodies are logged at DEBUG level, so this
filter redacts:
  - Phone numbers
  - SSN patterns
  - Member / group / subscriber identifiers
  - Values under known PHI keys in dict-style log arguments
"""

import logging
import re
from typing import Any

_PHONE_PATTERN = re.compile(
    r"(?:\+?1[-.\s]?)?\(?\b\d{3}\)?[-.\s]\d{3}[-.\s]\d{4}\b"
)
_SSN_PATTERN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_MEMBER_ID_PATTERN = re.compile(
    r'(member_id|memberId|group_number|groupNumber|dateOfBirth|date_of_birth)(["\']?\s*[:=]\s*["\']?)([A-Za-z0-9-]+)',
    re.IGNORECASE,
)

# Keys whose values should be redacted in dict-style log messages
_PHI_KEYS = frozenset({
    "first_name", "last_name", "firstname", "lastname",
    "patient_name", "patientname", "subscriber_name",
    "phone", "dob", "dateofbirth", "date_of_birth",
    "ssn", "social_security",
    "member_id", "memberid", "group_number", "groupnumber",
    "address", "address1", "street1",
})

REDACTED = "[REDACTED]"


def sanitize_text(text: str) -> str:
    """Remove PHI patterns from a text string."""
    if not isinstance(text, str):
        return text
    text = _SSN_PATTERN.sub(REDACTED, text)
    text = _PHONE_PATTERN.sub(REDACTED, text)
    text = _MEMBER_ID_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)
    return text


def sanitize_dict(data: Any, depth: int = 0) -> Any:
    """Recursively sanitize PHI values in dictionaries."""
    if depth > 10:
        return data
    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and key.lower().replace("-", "_") in _PHI_KEYS:
                result[key] = REDACTED
            else:
                result[key] = sanitize_dict(value, depth + 1)
        return result
    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_dict(item, depth + 1) for item in data)
    return data


class PHISanitizationFilter(logging.Filter):
    """Logging filter that redacts PHI from all log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = sanitize_text(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = sanitize_dict(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    sanitize_dict(a) if isinstance(a, (dict, list))
                    else sanitize_text(a) if isinstance(a, str)
                    else a
                    for a in record.args
                )

        if record.exc_text and isinstance(record.exc_text, str):
            record.exc_text = sanitize_text(record.exc_text)

        return True
