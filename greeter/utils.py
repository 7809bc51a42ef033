import json
import re
from typing import Any, Optional

from starlette.datastructures import QueryParams

AGE_PATTERN = re.compile(r"[+-]?[0-9]+")
AGE_MAX = 2**63 - 1
MORNING_END = 12
AFTERNOON_END = 17
JSON_WHITESPACE = " \t\r\n"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON literal {name}")


_decoder = json.JSONDecoder(parse_constant=_reject_constant)


def first_query_value(params: QueryParams, key: str) -> str:
    """Return the first value supplied for ``key``, or an empty string."""
    values = params.getlist(key)
    return values[0] if values else ""


def resolve_name(name: str, default: str) -> str:
    return name if name else default


def greeting_for_hour(hour: int) -> str:
    if hour < MORNING_END:
        return "Good morning"
    if hour < AFTERNOON_END:
        return "Good afternoon"
    return "Good evening"


def parse_age(raw: str) -> Optional[int]:
    """Parse an age query value leniently.

    Only a plain decimal integer (optional sign, ASCII digits) that fits in a
    signed 64-bit value and is strictly positive is accepted. Everything else
    is reported as ``None`` rather than as an error.
    """
    if not AGE_PATTERN.fullmatch(raw):
        return None
    age = int(raw)
    if age <= 0 or age > AGE_MAX:
        return None
    return age


def split_names(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def decode_first_json(raw: bytes) -> Any:
    """Decode the first JSON value in ``raw`` and ignore whatever follows it.

    Raises ``ValueError`` for an empty body, invalid UTF-8 or malformed JSON.
    ``NaN`` and ``Infinity`` are not JSON and are rejected too.
    """
    text = raw.decode("utf-8").lstrip(JSON_WHITESPACE)
    value, _ = _decoder.raw_decode(text)
    return value
