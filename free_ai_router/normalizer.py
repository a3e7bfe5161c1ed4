from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from functools import lru_cache
from typing import Any

FieldAccessor = Callable[[Any], Any]


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        return current.get(segment)
    if isinstance(current, list) and segment.lstrip("-").isdigit():
        index = int(segment)
        if -len(current) <= index < len(current):
            return current[index]
    return None


def field_accessor(path: str) -> FieldAccessor:
    """Build an accessor for a dotted path such as ``choices.0.message.content``.

    Integer segments index into lists. Any missing hop yields ``None``.
    """
    segments = tuple(segment.strip() for segment in path.split(".") if segment.strip())
    if not segments:
        raise ValueError(f"Empty response field path: {path!r}")

    def _access(payload: Any) -> Any:
        current = payload
        for segment in segments:
            current = _step(current, segment)
            if current is None:
                return None
        return current

    _access.__qualname__ = f"field_accessor[{'.'.join(segments)}]"
    return _access


@lru_cache(maxsize=256)
def compile_field_paths(paths: tuple[str, ...]) -> tuple[FieldAccessor, ...]:
    return tuple(field_accessor(path) for path in paths)


def extract_first(payload: Any, accessors: Iterable[FieldAccessor]) -> str | None:
    for accessor in accessors:
        value = accessor(payload)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_response(payload: Any, fields: Sequence[str]) -> str | None:
    return extract_first(payload, compile_field_paths(tuple(fields)))
