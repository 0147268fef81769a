"""Encoding of list filters into the service's filter query string.

A filter is a mapping of field name to comparison:

    {
        "state": {"$eq": "bootstrapped"},
        "created_at": {"$gte": datetime(2017, 1, 1), "$lte": datetime(2018, 1, 1)},
        "custom_attributes": {"room": {"$ne": "kitchen"}},
    }

which is encoded as
`state=bootstrapped&created_at__gte=2017-01-01T00:00:00Z&...`. The service
expects this whole string as the value of a single `filter` query parameter.
"""

from __future__ import annotations

import datetime
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode

from .exceptions import ConfigurationException

__all__ = ["encode_filter", "decode_filter", "encode_value"]

CUSTOM_ATTRIBUTES = "custom_attributes"

OPERATORS = {
    "$eq": "",
    "$ne": "__neq",
    "$gte": "__gte",
    "$lte": "__lte",
    "$in": "__in",
    "$nin": "__nin",
}


def encode_value(value: Any) -> str:
    """Encode a single value, dates as ISO-8601 UTC."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return value.isoformat(timespec="seconds") + "Z"
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return ",".join(encode_value(v) for v in value)
    return str(value)


def _encode_comparisons(key: str, comparison: Any) -> list[tuple[str, str]]:
    if not isinstance(comparison, Mapping):
        return [(key, encode_value(comparison))]
    pairs = []
    for operator, value in comparison.items():
        if operator not in OPERATORS:
            raise ConfigurationException(
                f"Unsupported filter operator '{operator}' for '{key}'"
            )
        pairs.append((f"{key}{OPERATORS[operator]}", encode_value(value)))
    return pairs


def encode_filter(
    filter: Mapping[str, Any], aliases: Mapping[str, str] | None = None
) -> str:
    """Encode a filter, renaming fields to their wire names using `aliases`."""
    aliases = aliases or {}
    pairs: list[tuple[str, str]] = []
    for name, comparison in filter.items():
        if name == CUSTOM_ATTRIBUTES:
            if not isinstance(comparison, Mapping):
                raise ConfigurationException("custom_attributes filter must be a dict")
            for attribute, attribute_comparison in comparison.items():
                pairs.extend(
                    _encode_comparisons(
                        f"{CUSTOM_ATTRIBUTES}__{attribute}", attribute_comparison
                    )
                )
            continue
        pairs.extend(_encode_comparisons(aliases.get(name, name), comparison))
    return urlencode(pairs)


def decode_filter(
    encoded: str, aliases: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Decode a filter string back into a filter mapping.

    Values are returned as strings since the encoded form has no types.
    """
    names = {wire: name for name, wire in (aliases or {}).items()}
    suffixes = {suffix: operator for operator, suffix in OPERATORS.items() if suffix}
    result: dict[str, Any] = {}
    for key, value in parse_qsl(encoded, keep_blank_values=True):
        operator = "$eq"
        for suffix, suffix_operator in suffixes.items():
            if key.endswith(suffix):
                key = key[: -len(suffix)]
                operator = suffix_operator
                break
        target = result
        if key.startswith(f"{CUSTOM_ATTRIBUTES}__"):
            target = result.setdefault(CUSTOM_ATTRIBUTES, {})
            key = key[len(CUSTOM_ATTRIBUTES) + 2 :]
        else:
            key = names.get(key, key)
        target.setdefault(key, {})[operator] = value
    return result
