# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Entity tag generation and conditional header matching."""

import hashlib
import json
from typing import Any

WILDCARD = "*"


def canonical_json(document: Any) -> bytes:
    """
    Serialize a document to its canonical byte form.

    Object keys are sorted and separators are compact, so two documents that
    differ only in key insertion order serialize to identical bytes. NaN and
    infinities are not JSON and raise ValueError.

    Args:
        document: JSON-compatible value

    Returns:
        UTF-8 encoded canonical JSON
    """
    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def tag_of(serialized: bytes) -> str:
    """
    Compute the entity tag of a serialized document.

    Args:
        serialized: Stored (canonical) bytes of a document

    Returns:
        SHA-256 hex digest of the bytes
    """
    return hashlib.sha256(serialized).hexdigest()


def format_etag(tag: str) -> str:
    """Render a tag as a strong ETag header value."""
    return f'"{tag}"'


def _split_header(value: str) -> list[str]:
    """Split a header value on commas that are not inside quotes."""
    parts: list[str] = []
    buf: list[str] = []
    in_quote = False
    for ch in value:
        if ch == '"':
            in_quote = not in_quote
            buf.append(ch)
        elif ch == "," and not in_quote:
            parts.append("".join(buf))
            buf.clear()
        else:
            buf.append(ch)
    parts.append("".join(buf))
    return parts


def parse_entity_tags(value: str | None, strong_only: bool = False) -> list[str] | str:
    """
    Parse an If-Match or If-None-Match header value.

    Accepts a comma separated list of quoted or bare tags, with or without the
    weak ``W/`` prefix. Empty tokens are dropped.

    Args:
        value: Raw header value, possibly None
        strong_only: Drop tags sent in weak form

    Returns:
        WILDCARD when the header is ``*``, otherwise the list of opaque tags
        (without quotes or weak prefix). An empty list means no usable tag.
    """
    if value is None:
        return []

    stripped = value.strip()
    if stripped == WILDCARD:
        return WILDCARD

    tags: list[str] = []
    for raw in _split_header(stripped):
        token = raw.strip()
        if token[:2].upper() == "W/":
            if strong_only:
                continue
            token = token[2:].lstrip()
        if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
            token = token[1:-1].strip()
        if token and '"' not in token:
            tags.append(token)
    return tags


def etag_matches(current_tag: str, header_value: str | None, weak: bool = True) -> bool:
    """
    Check whether a conditional header matches the current tag.

    Uses any-match semantics over the listed tags. ``*`` matches any existing
    representation. An absent or blank header never matches.

    Args:
        current_tag: Tag of the stored representation
        header_value: Raw If-Match or If-None-Match value
        weak: Weak comparison, where ``W/"x"`` equals ``"x"``. If-None-Match
            compares weakly; If-Match must pass ``weak=False`` so a weak tag
            never satisfies it.
    """
    tags = parse_entity_tags(header_value, strong_only=not weak)
    if tags == WILDCARD:
        return True
    return current_tag in tags
