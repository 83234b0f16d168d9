from __future__ import annotations

import copy
import json
import logging
import re
from collections.abc import Callable, Iterator, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from .errors import SchemaError, ValidationError

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def datify(value: Any) -> str:
    """Encode a date-like value as epoch milliseconds.

    Naive datetimes are taken as UTC. Numbers are taken as epoch
    milliseconds already, ISO-8601 strings are parsed.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return str((value - _EPOCH) // timedelta(milliseconds=1))
    if isinstance(value, date):
        return datify(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(int(value))
    if isinstance(value, str):
        try:
            return datify(datetime.fromisoformat(value))
        except ValueError as err:
            raise ValidationError(f"invalid date value: {value!r}") from err
    raise ValidationError(f"invalid date value: {value!r}")


def dedatify(value: Any) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(value))


def bufferify(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _stringify(value: Any) -> str:
    if not isinstance(value, str):
        return _to_json(value)
    return value


@dataclass(frozen=True)
class AttributeType:
    name: str
    wire_tag: str
    to_wire: Callable[[Any], Any] | None = None
    from_wire: Callable[[Any], Any] | None = None


ATTRIBUTE_TYPES: Mapping[str, AttributeType] = {
    "string": AttributeType("string", "S", None, _stringify),
    "number": AttributeType("number", "N", None, json.loads),
    # Booleans travel as the JSON literal under S, not as a native BOOL.
    "boolean": AttributeType("boolean", "S", _to_json, json.loads),
    "date": AttributeType("date", "N", datify, dedatify),
    "object": AttributeType("object", "S", _to_json, json.loads),
    "array": AttributeType("array", "S", _to_json, json.loads),
    "map": AttributeType("map", "M"),
    "list": AttributeType("list", "L"),
    "buffer": AttributeType("buffer", "B", bufferify, bytes),
}

_TYPE_TOKENS: Mapping[type, str] = {
    str: "string",
    int: "number",
    float: "number",
    Decimal: "number",
    bool: "boolean",
    datetime: "date",
    date: "date",
    bytes: "buffer",
    bytearray: "buffer",
    dict: "object",
    list: "array",
}


def _token_name(token: Any) -> str | None:
    if isinstance(token, type):
        return _TYPE_TOKENS.get(token)
    if isinstance(token, str):
        return token.lower()
    return None


def resolve_type(declared: Any) -> tuple[AttributeType, bool]:
    """Resolve a declared attribute shape to its catalog type and set flag.

    ``[str]`` is a set of strings, ``[{...}]`` is a list of maps, a plain
    dict without a ``type`` key is a map, and a dict with ``type`` carries
    the token plus options.
    """
    if declared is None:
        raise SchemaError("invalid attribute value: None")

    token = declared
    if isinstance(declared, Mapping) and "type" in declared:
        token = declared["type"]
        if token is None:
            raise SchemaError("invalid attribute type: None")

    is_set = False
    name: str | None
    if isinstance(token, (list, tuple)):
        if len(token) != 1:
            raise SchemaError(f"list and set declarations take exactly one element type: {token!r}")
        if isinstance(token[0], Mapping):
            name = "list"
        else:
            is_set = True
            name = _token_name(token[0])
    elif isinstance(token, Mapping):
        name = "map"
    else:
        name = _token_name(token)

    attr_type = ATTRIBUTE_TYPES.get(name) if name is not None else None
    if attr_type is None:
        raise SchemaError(f"invalid attribute type: {token!r}")
    if is_set and attr_type.name in {"map", "list"}:
        raise SchemaError(f"sets can only hold scalar types: {token!r}")
    return attr_type, is_set


def iter_shape(shape: Any, *, owner: str | None = None) -> Iterator[tuple[Any, Any]]:
    """Yield ``(name, declaration)`` pairs from a mapping or a sequence of pairs."""
    items = shape.items() if isinstance(shape, Mapping) else shape
    seen: set[Any] = set()
    for name, declared in items:
        if name in seen:
            where = f" in {owner}" if owner is not None else ""
            raise SchemaError(f"duplicate attribute: {name}{where}")
        seen.add(name)
        yield name, declared


def normalize_throughput(value: Any) -> dict[str, int]:
    if isinstance(value, int) and not isinstance(value, bool):
        value = {"read": value, "write": value}
    if not isinstance(value, Mapping):
        raise SchemaError(f"invalid throughput: {value!r}")

    read = value.get("read")
    write = value.get("write")
    for units in (read, write):
        if not isinstance(units, int) or isinstance(units, bool) or units < 1:
            raise SchemaError(f"invalid throughput: {dict(value)!r}")
    return {"read": read, "write": write}


def get_field(document: Any, name: Any) -> Any:
    if isinstance(document, Mapping):
        return document.get(name)
    # Instance fields only, so methods never read as document values.
    fields = getattr(document, "__dict__", None)
    if fields is not None:
        return fields.get(str(name))
    return getattr(document, str(name), None)


def set_field(document: Any, name: Any, value: Any) -> None:
    if isinstance(document, MutableMapping):
        document[name] = value
    else:
        setattr(document, str(name), value)


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _as_producer(default: Any) -> Callable[[], Any] | None:
    if default is None:
        return None
    if callable(default):
        return default
    return lambda: copy.deepcopy(default)


def _as_validator(validator: Any) -> Callable[[Any], Any] | None:
    if validator is None:
        return None
    if callable(validator):
        return validator
    if isinstance(validator, re.Pattern):
        return lambda value: validator.search(str(value)) is not None
    return lambda value: value == validator


@dataclass(frozen=True)
class IndexSpec:
    name: str
    global_: bool = False
    range_key: str | None = None
    throughput: dict[str, int] | None = None
    project: bool | tuple[str, ...] = True


def _index_spec(attr_name: Any, declared: Any, default_throughput: Mapping[str, int]) -> IndexSpec:
    if not isinstance(declared, Mapping):
        declared = {}

    global_ = bool(declared.get("global", False))
    range_key = None
    throughput = None
    if global_:
        range_key = declared.get("range_key")
        raw = declared.get("throughput")
        throughput = normalize_throughput(raw) if raw else dict(default_throughput)

    name = declared.get("name") or f"{attr_name}{'GlobalIndex' if global_ else 'LocalIndex'}"

    project = declared.get("project")
    if project is None:
        project = True
    elif isinstance(project, (list, tuple)):
        project = tuple(str(p) for p in project)
    else:
        project = bool(project)

    return IndexSpec(
        name=str(name),
        global_=global_,
        range_key=range_key,
        throughput=throughput,
        project=project,
    )


class Attribute:
    """One node of a schema's attribute tree.

    Built once from a declared shape; map and list attributes own child
    attributes built the same way (a list owns exactly one, keyed ``0``).
    """

    def __init__(
        self,
        name: Any,
        declared: Any,
        *,
        use_document_types: bool = True,
        throughput: Mapping[str, int] | None = None,
    ) -> None:
        logger.debug("creating attribute %s %r", name, declared)

        self.name = name
        self.options: dict[str, Any] = {}
        if isinstance(declared, Mapping) and "type" in declared:
            self.options = dict(declared)

        self.type, self.is_set = resolve_type(declared)
        if not use_document_types:
            if self.type.name == "map":
                logger.debug("overwriting attribute %s type to object", name)
                self.type = ATTRIBUTE_TYPES["object"]
            elif self.type.name == "list":
                logger.debug("overwriting attribute %s type to array", name)
                self.type = ATTRIBUTE_TYPES["array"]

        self.attributes: dict[Any, Attribute] = {}
        child_kwargs: dict[str, Any] = {"use_document_types": use_document_types, "throughput": throughput}
        if self.type.name == "map":
            children = self.options.get("map") if self.options else declared
            if not isinstance(children, Mapping) and self.options:
                children = self.options.get("type")
            if not isinstance(children, (Mapping, Sequence)) or isinstance(children, str):
                raise SchemaError(f"no map given for attribute: {name}")
            for child_name, child_declared in iter_shape(children, owner=str(name)):
                self.attributes[child_name] = Attribute(child_name, child_declared, **child_kwargs)
        elif self.type.name == "list":
            element = self.options.get("list") if self.options else declared
            if element is None and self.options:
                element = self.options.get("type")
            if not isinstance(element, (list, tuple)) or len(element) != 1:
                raise SchemaError(f"only one element type can be declared for list attribute: {name}")
            self.attributes[0] = Attribute(0, element[0], **child_kwargs)

        self.default = _as_producer(self.options.get("default"))
        self.required = bool(self.options.get("required", False))
        self.setter: Callable[[Any], Any] | None = self.options.get("set")
        self.getter: Callable[[Any], Any] | None = self.options.get("get")
        self.validator = _as_validator(self.options.get("validate"))

        self.indexes: dict[str, IndexSpec] = {}
        declared_index = self.options.get("index")
        if declared_index is not None and declared_index is not False:
            specs = declared_index if isinstance(declared_index, (list, tuple)) else [declared_index]
            for spec in specs:
                index = _index_spec(name, spec, throughput or {"read": 1, "write": 1})
                if index.name in self.indexes:
                    raise SchemaError(f"duplicate index names: {index.name}")
                self.indexes[index.name] = index

    def __repr__(self) -> str:
        kind = f"{self.type.name} set" if self.is_set else self.type.name
        return f"Attribute({self.name!r}, {kind})"

    @property
    def hash_key(self) -> bool:
        return bool(self.options.get("hash_key", False))

    @property
    def range_key(self) -> bool:
        return bool(self.options.get("range_key", False))

    def set_default(self, document: Any) -> None:
        if document is None or self.default is None:
            return
        if _is_absent(get_field(document, self.name)):
            set_field(document, self.name, self.default())
            logger.debug("defaulted %s", self.name)

    def to_wire(self, value: Any, no_set: bool = False, literal: bool = False) -> dict[str, Any] | None:
        """Encode ``value`` as a wire value, or None when there is nothing to store.

        ``literal`` encodes a comparison operand rather than a stored value:
        the validator and the setter are skipped.
        """
        if _is_absent(value):
            if self.required:
                raise ValidationError(f"required value missing: {self.name}")
            return None

        is_set = self.is_set and not no_set
        if is_set:
            if not _is_sequence(value):
                raise ValidationError(f"values must be a sequence: {self.name}")
            if len(value) == 0:
                return None

        if not literal:
            if self.validator is not None and not self.validator(value):
                raise ValidationError(f"validation failed: {self.name}")
            if self.setter is not None:
                value = self.setter(value)

        out: dict[str, Any]
        if is_set:
            encoded = []
            for v in value:
                item = self._encode_scalar(v)
                if item not in encoded:
                    encoded.append(item)
            if isinstance(value, (set, frozenset)):
                encoded.sort()
            out = {self.type.wire_tag + "S": encoded}
        elif self.type.name == "map":
            out = {"M": self._map_to_wire(value)}
        elif self.type.name == "list":
            out = {"L": self._list_to_wire(value)}
        else:
            out = {self.type.wire_tag: self._encode_scalar(value)}

        logger.debug("to_wire %s: %r", self.name, out)
        return out

    def _encode_scalar(self, value: Any) -> Any:
        if self.type.to_wire is not None:
            return self.type.to_wire(value)

        value = str(value)
        if self.type.name == "string":
            if self.options.get("trim"):
                value = value.strip()
            if self.options.get("lowercase"):
                value = value.lower()
            if self.options.get("uppercase"):
                value = value.upper()
        return value

    def _map_to_wire(self, value: Any) -> dict[str, Any]:
        if isinstance(value, (str, bytes, list, tuple, set, frozenset)) or not (
            isinstance(value, Mapping) or hasattr(value, "__dict__")
        ):
            raise ValidationError(f"values must be a mapping in a `map`: {self.name}")

        out: dict[str, Any] = {}
        for child in self.attributes.values():
            child.set_default(value)
            encoded = child.to_wire(get_field(value, child.name))
            if encoded is not None:
                out[str(child.name)] = encoded
        return out

    def _list_to_wire(self, value: Any) -> list[dict[str, Any]]:
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"values must be a sequence in a `list`: {self.name}")

        element = self.attributes[0]
        out: list[dict[str, Any]] = []
        for item in value:
            encoded = element.to_wire(item)
            if encoded is not None:
                out.append(encoded)
        return out

    def parse_wire(self, wire: Mapping[str, Any] | None) -> Any:
        if not wire:
            return None

        value: Any
        if self.is_set:
            raw = wire.get(self.type.wire_tag + "S")
            if raw is None:
                return None
            decoded = [self._decode_scalar(v) for v in raw]
            value = decoded if self.type.name in {"object", "array"} else set(decoded)
        elif self.type.name == "map":
            raw = wire.get("M")
            if raw is None:
                return None
            value = self._map_from_wire(raw)
        elif self.type.name == "list":
            raw = wire.get("L")
            if raw is None:
                return None
            value = self._list_from_wire(raw)
        elif self.type.name == "boolean" and "BOOL" in wire:
            value = bool(wire["BOOL"])
        else:
            raw = wire.get(self.type.wire_tag)
            if raw is None:
                return None
            value = self._decode_scalar(raw)

        if self.getter is not None:
            value = self.getter(value)

        logger.debug("parse_wire %s (%s): %r", self.name, self.type.name, value)
        return value

    def _decode_scalar(self, raw: Any) -> Any:
        if self.type.from_wire is not None:
            return self.type.from_wire(raw)
        return raw

    def _map_from_wire(self, raw: Mapping[str, Any]) -> dict[Any, Any]:
        out: dict[Any, Any] = {}
        for child in self.attributes.values():
            value = child.parse_wire(raw.get(str(child.name)))
            if value is not None:
                out[child.name] = value
        return out

    def _list_from_wire(self, raw: Sequence[Any]) -> list[Any]:
        element = self.attributes[0]
        out: list[Any] = []
        for item in raw:
            value = element.parse_wire(item)
            if value is not None:
                out.append(value)
        return out
