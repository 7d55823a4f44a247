"""Turn Mongo shell call arguments into Python values.

Shell arguments are JavaScript: keys may be unquoted, strings may use single
quotes and values may be constructor calls such as ``ObjectId("...")`` or
``new Date(Date.now() - 7 * 24 * 60 * 60 * 1000)``. They are rewritten into
MongoDB Extended JSON and decoded with ``bson.json_util``.
"""

from __future__ import annotations

import datetime as dt
import json
import math
import re
from typing import Any

from bson import json_util

from nl2query.query.parser import QueryParseError

_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")
_KEY_FOLLOWS = re.compile(r"\s*:")
_RELATIVE_DATE = re.compile(r"new\s+Date\(\s*Date\.now\(\)\s*([+-])\s*([\d\s*]+?)\s*\)")
_DATE_CALL = re.compile(r"(?:new\s+Date|ISODate)\(\s*(?:(['\"])(.*?)\1)?\s*\)")
_OBJECT_ID = re.compile(r"ObjectId\(\s*(['\"])([0-9a-fA-F]{24})\1\s*\)")
_INTEGER_CALL = re.compile(r"Number(?:Int|Long)\(\s*(['\"]?)(-?\d+)\1\s*\)")
_LITERALS = {"true": "true", "false": "false", "null": "null", "undefined": "null"}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "0": "\0"}


class ShellSyntaxError(QueryParseError):
    """Raised when shell arguments use syntax that cannot be converted."""


def _date_json(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    millis = int(value.timestamp() * 1000)
    return '{"$date": {"$numberLong": "%d"}}' % millis


def _number_json(literal: str) -> str:
    # JavaScript accepts ".5" and "10." where JSON does not.
    if any(char in literal for char in ".eE"):
        return json.dumps(float(literal))
    return str(int(literal))


def _parse_date_literal(text: str) -> dt.datetime:
    try:
        return dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ShellSyntaxError(f"Invalid date literal: {text!r}") from exc


def _read_string(text: str, start: int) -> tuple[str, int]:
    quote = text[start]
    chars: list[str] = []
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == "\\" and index + 1 < len(text):
            escaped = text[index + 1]
            chars.append(_ESCAPES.get(escaped, escaped))
            index += 2
            continue
        if char == quote:
            return "".join(chars), index + 1
        chars.append(char)
        index += 1
    raise ShellSyntaxError("Unterminated string literal.")


def _close(out: list[str], bracket: str) -> None:
    # JavaScript allows a trailing comma before a closing bracket.
    while out and not out[-1].strip():
        out.pop()
    if out and out[-1] == ",":
        out.pop()
    out.append(bracket)


def to_extended_json(text: str, *, now: dt.datetime | None = None) -> str:
    """Rewrite shell argument text as Extended JSON."""
    current = now or dt.datetime.now(dt.timezone.utc)
    out: list[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char in "'\"":
            value, index = _read_string(text, index)
            out.append(json.dumps(value))
            continue
        if char in "}]":
            _close(out, char)
            index += 1
            continue
        if char.isdigit() or (char in "-." and _NUMBER.match(text, index)):
            match = _NUMBER.match(text, index)
            if match is None:
                raise ShellSyntaxError(f"Unexpected character {char!r}.")
            out.append(_number_json(match.group(0)))
            index = match.end()
            continue
        if char.isalpha() or char in "_$":
            index = _read_word(text, index, out, current)
            continue
        if char in "{[,:" or char.isspace():
            out.append(char)
            index += 1
            continue
        raise ShellSyntaxError(f"Unsupported syntax near {text[index:index + 20]!r}.")
    return "".join(out)


def _read_word(text: str, index: int, out: list[str], now: dt.datetime) -> int:
    relative = _RELATIVE_DATE.match(text, index)
    if relative:
        factors = [part for part in re.split(r"\s*\*\s*", relative.group(2).strip()) if part]
        offset = dt.timedelta(milliseconds=math.prod(int(part) for part in factors))
        moment = now - offset if relative.group(1) == "-" else now + offset
        out.append(_date_json(moment))
        return relative.end()

    date_call = _DATE_CALL.match(text, index)
    if date_call:
        literal = date_call.group(2)
        moment = now if literal is None else _parse_date_literal(literal)
        out.append(_date_json(moment))
        return date_call.end()

    object_id = _OBJECT_ID.match(text, index)
    if object_id:
        out.append('{"$oid": "%s"}' % object_id.group(2).lower())
        return object_id.end()

    integer = _INTEGER_CALL.match(text, index)
    if integer:
        out.append(integer.group(2))
        return integer.end()

    word = _IDENTIFIER.match(text, index)
    if word is None:
        raise ShellSyntaxError(f"Unexpected character {text[index]!r}.")
    name = word.group(0)
    if _KEY_FOLLOWS.match(text, word.end()):
        out.append(json.dumps(name))
    elif name in _LITERALS:
        out.append(_LITERALS[name])
    else:
        raise ShellSyntaxError(f"Unsupported expression '{name}' in query arguments.")
    return word.end()


def parse_shell_arguments(text: str, *, now: dt.datetime | None = None) -> list[Any]:
    """Decode a comma-separated shell argument list into Python values."""
    if not text.strip():
        return []
    converted = to_extended_json(text, now=now)
    try:
        values = json_util.loads("[" + converted + "]")
    except (TypeError, ValueError) as exc:
        raise ShellSyntaxError(f"Query arguments are not valid: {exc}") from exc
    return list(values)
