from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .attribute import Attribute, get_field, iter_shape, normalize_throughput, set_field
from .errors import ModelError, SchemaError
from .virtual import VirtualType

logger = logging.getLogger(__name__)

DEFAULT_THROUGHPUT = {"read": 1, "write": 1}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Timestamps:
    created_at: str = "created_at"
    updated_at: str = "updated_at"


def _resolve_timestamps(value: Any) -> Timestamps | None:
    if not value:
        return None
    if value is True:
        return Timestamps()
    if isinstance(value, Mapping):
        created_at = value.get("created_at")
        updated_at = value.get("updated_at")
        if not created_at or not updated_at:
            raise SchemaError("missing created_at and updated_at timestamps attribute; maybe set timestamps=True?")
        return Timestamps(created_at=str(created_at), updated_at=str(updated_at))
    raise SchemaError(f"invalid syntax for timestamps: {value!r}")


class Schema:
    """Declared document shape plus the key, index and hook facts derived from it.

    ``shape`` is a mapping (or a sequence of ``(name, declaration)`` pairs)
    walked once in declaration order. The first attribute without a key role
    becomes the hash key unless a later attribute sets ``hash_key=True``.
    """

    def __init__(
        self,
        shape: Any,
        *,
        throughput: int | Mapping[str, int] | None = None,
        timestamps: bool | Mapping[str, str] | None = None,
        use_document_types: bool = True,
    ) -> None:
        logger.debug("creating schema %r", shape)

        self.methods: dict[str, Callable[..., Any]] = {}
        self.statics: dict[str, Callable[..., Any]] = {}
        self.virtuals: dict[str, VirtualType] = {}
        self.tree: dict[str, Any] = {}

        if throughput is None:
            self.throughput = dict(DEFAULT_THROUGHPUT)
        else:
            self.throughput = normalize_throughput(throughput)

        self.use_document_types = use_document_types

        declared = dict(iter_shape(shape))
        self.timestamps = _resolve_timestamps(timestamps)
        if self.timestamps is not None:
            declared[self.timestamps.created_at] = {"type": datetime, "default": _now}
            declared[self.timestamps.updated_at] = {
                "type": datetime,
                "default": _now,
                "set": lambda _value: _now(),
            }

        self.attributes: dict[str, Attribute] = {}
        self.hash_key: Attribute | None = None
        self.range_key: Attribute | None = None
        self.indexes: dict[str, dict[str, Attribute]] = {"local": {}, "global": {}}
        self._explicit_hash = False

        for name, declaration in declared.items():
            logger.debug("adding attribute to schema (%s)", name)
            attr = Attribute(
                name,
                declaration,
                use_document_types=use_document_types,
                throughput=self.throughput,
            )
            self._assign_key_role(attr)
            self._register_indexes(attr)
            self.attributes[name] = attr

        if self.hash_key is None:
            raise SchemaError("schema has no hash key")

        for index_name, attr in self.indexes["global"].items():
            range_name = attr.indexes[index_name].range_key
            if range_name is not None and range_name not in self.attributes:
                raise SchemaError(f"unknown range key {range_name} for index {index_name}")

    def _assign_key_role(self, attr: Attribute) -> None:
        if attr.hash_key and attr.range_key:
            raise SchemaError(f"cannot be both hash_key and range_key: {attr.name}")

        if attr.hash_key:
            if self._explicit_hash:
                raise SchemaError(f"duplicate hash_key: {attr.name}")
            self.hash_key = attr
            self._explicit_hash = True
        elif attr.range_key:
            if self.range_key is not None:
                raise SchemaError(f"duplicate range_key: {attr.name}")
            self.range_key = attr
        elif self.hash_key is None:
            self.hash_key = attr

    def _register_indexes(self, attr: Attribute) -> None:
        for index_name, index in attr.indexes.items():
            if index_name in self.indexes["global"] or index_name in self.indexes["local"]:
                raise SchemaError(f"duplicate index name: {index_name}")
            self.indexes["global" if index.global_ else "local"][index_name] = attr

    @property
    def key_names(self) -> tuple[str, ...]:
        assert self.hash_key is not None
        if self.range_key is None:
            return (self.hash_key.name,)
        return (self.hash_key.name, self.range_key.name)

    def resolve_key(self, key: Any) -> dict[str, Any]:
        """Normalize a bare hash value, a key mapping or a document to a key mapping."""
        assert self.hash_key is not None
        if key is None:
            raise ModelError("key required")

        hash_name = self.hash_key.name
        if isinstance(key, Mapping) or hasattr(key, "__dict__"):
            if get_field(key, hash_name) is not None:
                return self._check_range({name: get_field(key, name) for name in self.key_names})
            if isinstance(key, Mapping):
                raise ModelError(f"hash key required: {hash_name}")

        return self._check_range({hash_name: key})

    def _check_range(self, key: dict[str, Any]) -> dict[str, Any]:
        if self.range_key is not None and key.get(self.range_key.name) is None:
            raise ModelError(f"range key required: {self.range_key.name}")
        return key

    def key_to_wire(self, key: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in self.key_names:
            encoded = self.attributes[name].to_wire(key.get(name))
            if encoded is None:
                raise ModelError(f"key value required: {name}")
            out[name] = encoded
        return out

    def to_wire(self, document: Any) -> dict[str, Any]:
        item: dict[str, Any] = {}
        for name, attr in self.attributes.items():
            attr.set_default(document)
            encoded = attr.to_wire(get_field(document, name))
            if encoded is not None:
                item[name] = encoded

        logger.debug("to_wire: %r", item)
        return item

    def parse_wire(self, target: Any, wire_item: Mapping[str, Any]) -> Mapping[str, Any]:
        for name, attr in self.attributes.items():
            value = attr.parse_wire(wire_item.get(name))
            if value is not None:
                set_field(target, name, value)

        logger.debug("parse_wire: %r", target)
        return wire_item

    def method(self, name: str | Mapping[str, Callable[..., Any]], fn: Callable[..., Any] | None = None) -> Schema:
        if isinstance(name, Mapping):
            self.methods.update(name)
        else:
            self.methods[name] = fn  # type: ignore[assignment]
        return self

    def static(self, name: str | Mapping[str, Callable[..., Any]], fn: Callable[..., Any] | None = None) -> Schema:
        if isinstance(name, Mapping):
            self.statics.update(name)
        else:
            self.statics[name] = fn  # type: ignore[assignment]
        return self

    def virtual(self, path: str, options: Mapping[str, Any] | None = None) -> VirtualType:
        parts = path.split(".")
        node = self.tree
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise SchemaError(f"virtual path collides with virtual {part}: {path}")
            node = child

        virtual = node.get(parts[-1])
        if virtual is None:
            virtual = VirtualType(path, options)
            node[parts[-1]] = virtual
        elif not isinstance(virtual, VirtualType):
            raise SchemaError(f"virtual path collides with nested virtuals: {path}")

        self.virtuals[path] = virtual
        return virtual

    def virtualpath(self, path: str) -> VirtualType | None:
        return self.virtuals.get(path)
