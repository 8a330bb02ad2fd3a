# flovyn/core/codec/serde.py
"""
JSON codec for everything that crosses the engine boundary: handler inputs
and outputs, memoized operation results, signal payloads and state values.

Values JSON cannot carry are wrapped in a tagged envelope:

    {'__flovyn_type__': 'datetime', 'value': '2024-01-02T03:04:00'}
    {'__flovyn_type__': 'dataclass', 'class': 'shop.models:Order', 'data': {...}}

``rehydrate_value`` reverses the wrapping. Classes are resolved by import
path, so they must live at module level in an importable module.
"""

from __future__ import annotations

import base64
import dataclasses
import datetime as dt
import json
from importlib import import_module
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union, cast

from pydantic import BaseModel

from flovyn.core.logging import get_logger

logger = get_logger('serde')

Json = Union[None, bool, int, float, str, List['Json'], Dict[str, 'Json']]

TYPE_TAG = '__flovyn_type__'

_MODEL = 'model'
_DATACLASS = 'dataclass'


class SerializationError(ValueError):
    """A value could not be encoded to JSON or decoded back."""


# (tag, python type, encode, decode). Order matters: datetime subclasses date.
_SCALAR_CODECS: tuple[tuple[str, type, Callable[[Any], str], Callable[[str], Any]], ...] = (
    ('datetime', dt.datetime, lambda v: v.isoformat(), dt.datetime.fromisoformat),
    ('date', dt.date, lambda v: v.isoformat(), dt.date.fromisoformat),
    ('time', dt.time, lambda v: v.isoformat(), dt.time.fromisoformat),
    (
        'bytes',
        (bytes, bytearray),  # type: ignore[arg-type]
        lambda v: base64.b64encode(bytes(v)).decode('ascii'),
        base64.b64decode,
    ),
)
_SCALAR_DECODERS = {tag: decode for tag, _, _, decode in _SCALAR_CODECS}

_TYPE_CACHE: Dict[str, type] = {}


def clear_serde_caches() -> None:
    """Forget every class resolved during rehydration."""
    _TYPE_CACHE.clear()


def _class_path(cls: type) -> str:
    module_name = cls.__module__
    qualname = cls.__qualname__
    if module_name in ('__main__', '__mp_main__'):
        raise SerializationError(
            f"Cannot serialize '{qualname}': it is defined in '__main__', "
            'which a worker process cannot import. Move it to a module.'
        )
    if '<locals>' in qualname:
        raise SerializationError(
            f"Cannot serialize '{qualname}': it is a local class defined inside a "
            'function. Move it to module level.'
        )
    return f'{module_name}:{qualname}'


def _class_envelope(kind: str, value: Any, data: Json) -> Json:
    return {TYPE_TAG: kind, 'class': _class_path(type(value)), 'data': data}


def to_jsonable(value: Any) -> Json:
    """Convert ``value`` into plain JSON, wrapping non-JSON types in envelopes.

    Mappings get string keys; tuples, lists and sets become lists.

    Raises:
        SerializationError: ``value`` (or something nested in it) has no
            JSON representation.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    for tag, py_type, encode, _ in _SCALAR_CODECS:
        if isinstance(value, py_type):
            return {TYPE_TAG: tag, 'value': encode(value)}

    if isinstance(value, BaseModel):
        return _class_envelope(_MODEL, value, value.model_dump(mode='json'))

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        # Walk fields ourselves; asdict() would drop the nested class paths.
        fields = {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
        return _class_envelope(_DATACLASS, value, cast(Json, fields))

    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in cast(Mapping[object, object], value).items()}

    if isinstance(value, (set, frozenset)) or (
        isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))
    ):
        return [to_jsonable(item) for item in cast(Sequence[object], value)]

    raise SerializationError(f'Cannot serialize value of type {type(value).__name__}')


def dumps_json(value: Any) -> str:
    """Encode ``value`` as compact JSON text. NaN and infinity are rejected."""
    return json.dumps(
        to_jsonable(value), ensure_ascii=False, separators=(',', ':'), allow_nan=False
    )


def loads_json(text: Optional[str]) -> Json:
    return json.loads(text) if text else None


def _load_class(path: str) -> type:
    cached = _TYPE_CACHE.get(path)
    if cached is not None:
        return cached

    module_name, _, qualname = path.partition(':')
    try:
        resolved: Any = import_module(module_name)
    except ImportError as e:
        raise SerializationError(f"Could not import module '{module_name}' for {path}: {e}") from e
    try:
        for part in qualname.split('.'):
            resolved = getattr(resolved, part)
    except AttributeError as e:
        raise SerializationError(f'Could not resolve {path}: {e}') from e
    if not isinstance(resolved, type):
        raise SerializationError(f'{path} is not a class')

    _TYPE_CACHE[path] = resolved
    return resolved


def _build_model(path: str, data: Json) -> BaseModel:
    cls = _load_class(path)
    if not issubclass(cls, BaseModel):
        raise SerializationError(f'{path} is not a BaseModel')
    return cls.model_validate(data)


def _build_dataclass(path: str, data: Json) -> Any:
    cls = _load_class(path)
    if not dataclasses.is_dataclass(cls):
        raise SerializationError(f'{path} is not a dataclass')
    if not isinstance(data, dict):
        raise SerializationError(f'{path} data must be an object, got {type(data).__name__}')

    declared = {f.name: f for f in dataclasses.fields(cls)}
    # Fields dropped from the class since encoding are ignored.
    values = {k: rehydrate_value(v) for k, v in data.items() if k in declared}
    instance = cls(**{k: v for k, v in values.items() if declared[k].init})
    for name, field_value in values.items():
        if not declared[name].init:
            object.__setattr__(instance, name, field_value)
    return instance


_CLASS_BUILDERS: Dict[str, Callable[[str, Json], Any]] = {
    _MODEL: _build_model,
    _DATACLASS: _build_dataclass,
}


def _unwrap(envelope: Dict[str, Json]) -> Any:
    tag = cast(str, envelope[TYPE_TAG])
    decode = _SCALAR_DECODERS.get(tag)
    if decode is not None:
        return decode(cast(str, envelope['value']))

    builder = _CLASS_BUILDERS.get(tag)
    if builder is None:
        raise SerializationError(f'Unknown envelope type {tag!r}')
    path = cast(str, envelope.get('class'))
    try:
        return builder(path, envelope.get('data'))
    except SerializationError:
        raise
    except Exception as e:
        logger.error(f'Failed to rehydrate {tag} {path}: {type(e).__name__}: {e}')
        raise SerializationError(f'Failed to rehydrate {path}: {e}') from e


def rehydrate_value(value: Json) -> Any:
    """Reverse :func:`to_jsonable`, rebuilding enveloped values recursively.

    Raises:
        SerializationError: An enveloped class cannot be imported or rebuilt.
    """
    if isinstance(value, dict):
        if TYPE_TAG in value:
            return _unwrap(value)
        return {k: rehydrate_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [rehydrate_value(item) for item in value]
    return value


def serialize(value: Any) -> str:
    return dumps_json(value)


def deserialize(payload: Optional[str]) -> Any:
    """Inverse of :func:`serialize`. Empty payloads give ``None``."""
    return rehydrate_value(loads_json(payload))
