from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any


PHONE_FIELDS = frozenset({"phone", "mobile", "fax"})
_NON_DIGIT_RE = re.compile(r"\D")


def is_phone_field(field: str) -> bool:
    return field.rsplit(".", 1)[-1] in PHONE_FIELDS


def normalize_text(value: str) -> str:
    return value.strip().casefold()


def normalize_phone(value: str) -> str:
    trimmed = value.strip()
    digits = _NON_DIGIT_RE.sub("", trimmed)
    if digits and trimmed.startswith("+"):
        return f"+{digits}"
    return digits


def normalize_value(field: str, value: str) -> str:
    if is_phone_field(field):
        return normalize_phone(value)
    return normalize_text(value)


def match_key(field: str, normalized_value: str, *, phone_match_digits: int) -> str:
    """Key used for equality; phones compare on their trailing national digits."""

    if not is_phone_field(field):
        return normalized_value
    digits = normalized_value.lstrip("+")
    if phone_match_digits > 0:
        return digits[-phone_match_digits:]
    return digits


def extract_values(data: Mapping[str, Any], path: str) -> list[str]:
    """Collect non-blank string values at a dotted path, descending into lists."""

    current: list[Any] = [data]
    for part in path.split("."):
        next_level: list[Any] = []
        for node in current:
            if isinstance(node, Mapping):
                value = node.get(part)
            else:
                value = getattr(node, part, None)
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                next_level.extend(item for item in value if item is not None)
            else:
                next_level.append(value)
        current = next_level
    return [value for value in current if isinstance(value, str) and value.strip()]


def path_present(data: Mapping[str, Any], path: str) -> bool:
    return path.split(".", 1)[0] in data
