"""Recover a JSON array from imperfect model output.

Each strategy is a pure function ``text -> ParseResult``. ``parse_json_array``
tries them in order and returns the first success.
"""
import json
import re
from typing import Any, Callable, List, NamedTuple, Optional

_FENCE_RE = re.compile(r'```(?:json|JSON)?\s*([\s\S]*?)```')
_ARRAY_RE = re.compile(r'\[[\s\S]*\]')


class ParseResult(NamedTuple):
    ok: bool
    value: Optional[List[Any]] = None
    strategy: Optional[str] = None
    error: Optional[str] = None


def _loads_array(candidate: str, strategy: str) -> ParseResult:
    try:
        value = json.loads(candidate)
    except (TypeError, ValueError) as e:
        return ParseResult(False, strategy=strategy, error=str(e))
    if not isinstance(value, list):
        return ParseResult(False, strategy=strategy, error=f'expected array, got {type(value).__name__}')
    return ParseResult(True, value=value, strategy=strategy)


def parse_direct(text: str) -> ParseResult:
    return _loads_array(text.strip(), 'direct')


def parse_fenced(text: str) -> ParseResult:
    match = _FENCE_RE.search(text)
    if not match:
        return ParseResult(False, strategy='fenced', error='no fenced block')
    return _loads_array(match.group(1).strip(), 'fenced')


def parse_embedded_array(text: str) -> ParseResult:
    match = _ARRAY_RE.search(text)
    if not match:
        return ParseResult(False, strategy='embedded', error='no array found')
    return _loads_array(match.group(0), 'embedded')


def parse_truncated_array(text: str) -> ParseResult:
    """Salvage the complete objects of an array cut off mid-object.

    Trims everything after the last ``}`` that still closes a valid prefix and
    closes the array. Walks backwards over ``}`` positions so a brace belonging
    to a truncated nested object does not defeat the salvage.
    """
    start = text.find('[')
    if start == -1:
        return ParseResult(False, strategy='salvage', error='no array start')
    body = text[start:]
    end = body.rfind('}')
    while end != -1:
        result = _loads_array(body[:end + 1] + ']', 'salvage')
        if result.ok and result.value:
            return result
        end = body.rfind('}', 0, end)
    return ParseResult(False, strategy='salvage', error='no complete object to salvage')


STRATEGIES: List[Callable[[str], ParseResult]] = [
    parse_direct,
    parse_fenced,
    parse_embedded_array,
    parse_truncated_array,
]


def parse_json_array(text, strategies=None) -> ParseResult:
    """Run the recovery cascade; returns the first successful ParseResult."""
    if not text or not isinstance(text, str):
        return ParseResult(False, error='empty response')

    errors = []
    for strategy in strategies or STRATEGIES:
        result = strategy(text)
        if result.ok:
            return result
        errors.append(f'{result.strategy}: {result.error}')
    return ParseResult(False, error='; '.join(errors))
