"""Parsing of document-store (Mongo shell style) query text."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from nl2query.query.parser import QueryParseError

_HEAD = re.compile(r"^db\.([A-Za-z_][\w-]*)\.([A-Za-z_]\w*)\s*\(")
_MODIFIER = re.compile(r"^\.([A-Za-z_]\w*)\s*\(")


@dataclass(frozen=True)
class CursorModifier:
    name: str
    arguments: str


@dataclass(frozen=True)
class DocumentQuery:
    """``db.<collection>.<operation>(<arguments>)[.<modifier>(...)]*``"""

    collection: str
    operation: str
    arguments: str
    modifiers: tuple[CursorModifier, ...] = field(default_factory=tuple)


def _closing_paren(text: str, open_index: int) -> int:
    """Index of the parenthesis closing the one at ``open_index``."""
    depth = 0
    quote: str | None = None
    escaped = False
    for index in range(open_index, len(text)):
        char = text[index]
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return index
    raise QueryParseError("Unbalanced parentheses in document query.")


def parse_document_query(text: str) -> DocumentQuery:
    """Parse a single shell-style statement; trailing content is an error."""
    normalized = text.strip()
    if not normalized:
        raise QueryParseError("Query cannot be empty.")

    head = _HEAD.match(normalized)
    if not head:
        raise QueryParseError(
            "Document queries must look like db.<collection>.<operation>(...)."
        )
    close = _closing_paren(normalized, head.end() - 1)
    arguments = normalized[head.end() : close].strip()

    modifiers: list[CursorModifier] = []
    rest = normalized[close + 1 :].lstrip()
    while rest.startswith("."):
        match = _MODIFIER.match(rest)
        if not match:
            raise QueryParseError(f"Unexpected content after query: {rest[:40]!r}")
        end = _closing_paren(rest, match.end() - 1)
        modifiers.append(
            CursorModifier(name=match.group(1), arguments=rest[match.end() : end].strip())
        )
        rest = rest[end + 1 :].lstrip()

    if rest.rstrip(";").strip():
        raise QueryParseError("Multiple statements are not allowed.")

    return DocumentQuery(
        collection=head.group(1),
        operation=head.group(2),
        arguments=arguments,
        modifiers=tuple(modifiers),
    )
