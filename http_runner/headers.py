"""Header name helpers.

httpx lower-cases header names in its mapping views but keeps the casing
actually sent/received in ``Headers.raw``. These helpers restore the casing
for display and provide case-insensitive access to plain dict headers.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TypeVar

import httpx

V = TypeVar("V")


def normalize_header_names(headers: Mapping[str, V], raw_names: Iterable[str]) -> dict[str, V]:
    """Remap each key of ``headers`` to the first casing seen in ``raw_names``.

    Keys with no raw match are kept as given. Applying this twice with the
    same raw names yields the same mapping.
    """
    casing: dict[str, str] = {}
    for name in raw_names:
        casing.setdefault(name.lower(), name)

    return {casing.get(key.lower(), key): value for key, value in headers.items()}


def raw_header_names(headers: httpx.Headers) -> list[str]:
    """Header names in wire order and casing."""
    return [name.decode("latin-1") for name, _ in headers.raw]


def collapse_headers(headers: httpx.Headers) -> dict[str, str | list[str]]:
    """Lower-cased mapping; names repeated on the wire map to a list of values."""
    collapsed: dict[str, str | list[str]] = {}
    for name, value in headers.multi_items():
        existing = collapsed.get(name)
        if existing is None:
            collapsed[name] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            collapsed[name] = [existing, value]
    return collapsed


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Return a header value using case-insensitive key matching."""
    lower = name.lower()
    for key, value in headers.items():
        if key.lower() == lower:
            return value
    return None


def remove_header(headers: dict[str, str], name: str) -> None:
    """Remove every key matching ``name`` case-insensitively, in place."""
    lower = name.lower()
    for key in [k for k in headers if k.lower() == lower]:
        del headers[key]


def header_bytes_size(headers: httpx.Headers) -> int:
    """Approximate header size: raw name/value lengths plus one per header pair."""
    raw = headers.raw
    return sum(len(name) + len(value) for name, value in raw) + len(raw)
