from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, ClassVar, Self, TypeVar

import boto3
from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .conditions import Counts, Page
from .errors import DocmodelError, ModelError
from .query import Query
from .scan import Scan
from .schema import Schema
from .table import Table
from .update_expression import apply_condition, build_update_request

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BATCH_GET_SIZE = 100
MAX_BATCH_WRITE_SIZE = 25
MAX_BATCH_WORKERS = 8

MODEL_DEFAULTS: Mapping[str, Any] = {
    "create": True,
    "update": False,
    "wait_for_active": True,
    "wait_for_active_timeout": 180.0,
    "prefix": "",
}


def _chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchGetResult(list[T]):
    """Documents returned by a batch get plus any keys left unprocessed."""

    def __init__(self, items: Iterable[T] = (), *, unprocessed: list[dict[str, Any]] | None = None) -> None:
        super().__init__(items)
        self.unprocessed = unprocessed or []


class _instance_or_class:
    """Dispatch one name to an instance method or a classmethod by access."""

    def __init__(self, instance_fn: Callable[..., Any], class_fn: Callable[..., Any]) -> None:
        self._instance_fn = instance_fn
        self._class_fn = class_fn
        self.__doc__ = instance_fn.__doc__

    def __get__(self, obj: Any, owner: type) -> Callable[..., Any]:
        if obj is None:
            return self._class_fn.__get__(None, owner)
        return self._instance_fn.__get__(obj, owner)


class Model:
    """Base class of compiled models; each subclass owns a schema and a table.

    Documents keep their values as plain instance attributes.
    """

    schema: ClassVar[Schema]
    table: ClassVar[Table]
    options: ClassVar[dict[str, Any]]

    def __init__(self, source: Mapping[str, Any] | None = None, /, **fields: Any) -> None:
        for name, value in {**dict(source or {}), **fields}.items():
            setattr(self, name, value)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({fields})"

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return vars(self) == vars(other)

    __hash__ = None  # type: ignore[assignment]

    def to_dict(self) -> dict[str, Any]:
        return dict(vars(self))

    def to_wire(self) -> dict[str, Any]:
        return type(self).schema.to_wire(self)

    def get_virtual(self, path: str) -> Any:
        return self._virtual(path).apply_get(self)

    def set_virtual(self, path: str, value: Any) -> None:
        self._virtual(path).apply_set(self, value)

    def _virtual(self, path: str) -> Any:
        virtual = type(self).schema.virtualpath(path)
        if virtual is None:
            raise ModelError(f"unknown virtual: {path}")
        return virtual

    # Plumbing shared by every operation.

    @classmethod
    def ensure_table(cls) -> None:
        cls.table.init()
        if cls.options.get("wait_for_active"):
            cls.table.wait_for_active()

    @classmethod
    def wait_for_active(cls, timeout: float | None = None) -> None:
        cls.table.wait_for_active(timeout)

    @classmethod
    def from_wire(cls, item: Mapping[str, Any]) -> Self:
        document = cls()
        cls.schema.parse_wire(document, item)
        return document

    @classmethod
    def _call(cls, method: str, request: Mapping[str, Any]) -> dict[str, Any]:
        logger.debug("%s: %r", method, request)
        try:
            response = dict(getattr(cls.table.client, method)(**request))
        except ClientError as err:
            raise map_client_error(err) from err
        logger.debug("%s response: %r", method, response)
        return response

    # Single items.

    def put(
        self,
        overwrite: bool = True,
        *,
        condition: str | None = None,
        condition_names: Mapping[str, str] | None = None,
        condition_values: Mapping[str, Any] | None = None,
    ) -> Self:
        cls = type(self)
        request: dict[str, Any] = {"TableName": cls.table.name, "Item": cls.schema.to_wire(self)}
        if not overwrite:
            request["ConditionExpression"] = "attribute_not_exists(#_hk)"
            request["ExpressionAttributeNames"] = {"#_hk": cls.schema.hash_key.name}
        apply_condition(request, cls.schema, condition, condition_names, condition_values)

        cls.ensure_table()
        cls._call("put_item", request)
        return self

    save = put

    @classmethod
    def create(cls, obj: Any, overwrite: bool = False, **options: Any) -> Self:
        document = obj if isinstance(obj, cls) else cls(obj)
        return document.put(overwrite, **options)

    @classmethod
    def get(
        cls,
        key: Any,
        attributes: Iterable[str] | None = None,
        consistent: bool = False,
    ) -> Self | None:
        resolved = cls.schema.resolve_key(key)
        request: dict[str, Any] = {"TableName": cls.table.name, "Key": cls.schema.key_to_wire(resolved)}
        if attributes:
            request["AttributesToGet"] = list(attributes)
        if consistent:
            request["ConsistentRead"] = True

        cls.ensure_table()
        response = cls._call("get_item", request)
        item = response.get("Item")
        if not item:
            return None
        return cls.from_wire(item)

    @classmethod
    def update(
        cls,
        key: Any,
        update: Mapping[str, Any],
        *,
        create_required: bool = False,
        update_timestamps: bool = True,
        allow_empty_array: bool = False,
        condition: str | None = None,
        condition_names: Mapping[str, str] | None = None,
        condition_values: Mapping[str, Any] | None = None,
        return_values: str = "ALL_NEW",
    ) -> Self | None:
        """Apply ``$PUT``/``$ADD``/``$DELETE`` operations to one item.

        A plain mapping is treated as ``$PUT``. With ``key=None`` the key is
        built from the key attributes' defaults.
        """
        if key is None:
            key = cls._default_key()
        resolved = cls.schema.resolve_key(key)

        request = build_update_request(
            cls.schema,
            cls.table.name,
            resolved,
            update,
            create_required=create_required,
            update_timestamps=update_timestamps,
            allow_empty_array=allow_empty_array,
            condition=condition,
            condition_names=condition_names,
            condition_values=condition_values,
            return_values=return_values,
        )

        cls.ensure_table()
        response = cls._call("update_item", request)
        attributes = response.get("Attributes")
        if not attributes:
            return None
        return cls.from_wire(attributes)

    @classmethod
    def _default_key(cls) -> dict[str, Any]:
        key: dict[str, Any] = {}
        for name in cls.schema.key_names:
            attr = cls.schema.attributes[name]
            if attr.default is None:
                if attr is cls.schema.hash_key:
                    raise ModelError("key required")
                raise ModelError(f"range key required: {name}")
            key[name] = attr.default()
        return key

    def _delete_document(self, update: bool = False) -> Self:
        cls = type(self)
        key = {}
        for name in cls.schema.key_names:
            value = vars(self).get(name)
            if value is None:
                role = "hash" if name == cls.schema.hash_key.name else "range"
                raise ModelError(f"{role} key required: {name}")
            key[name] = value

        request: dict[str, Any] = {"TableName": cls.table.name, "Key": cls.schema.key_to_wire(key)}
        if update:
            request["ReturnValues"] = "ALL_OLD"
            request["ConditionExpression"] = "attribute_exists(#_hk)"
            request["ExpressionAttributeNames"] = {"#_hk": cls.schema.hash_key.name}

        cls.ensure_table()
        response = cls._call("delete_item", request)
        if update and response.get("Attributes"):
            cls.schema.parse_wire(self, response["Attributes"])
        return self

    @classmethod
    def _delete_key(cls, key: Any, update: bool = False) -> Self:
        return cls(cls.schema.resolve_key(key))._delete_document(update)

    delete = _instance_or_class(_delete_document, _delete_key)

    # Queries and scans.

    @classmethod
    def query(cls, query: Any, **options: Any) -> Query:
        return Query(cls, query, options)

    @classmethod
    def query_one(cls, query: Any, **options: Any) -> Query:
        return Query(cls, query, options).one()

    @classmethod
    def scan(cls, filter: Any = None, **options: Any) -> Scan:
        return Scan(cls, filter, options)

    # Batches.

    @classmethod
    def batch_get(
        cls,
        keys: Sequence[Any],
        attributes: Iterable[str] | None = None,
        consistent: bool = False,
    ) -> BatchGetResult[Self]:
        if not isinstance(keys, (list, tuple)):
            raise ModelError("batch_get requires keys to be a list")

        schema = cls.schema
        wire_keys = [schema.key_to_wire(schema.resolve_key(key)) for key in keys]

        cls.ensure_table()
        table_name = cls.table.name
        payloads = []
        for chunk in _chunked(wire_keys, MAX_BATCH_GET_SIZE):
            request: dict[str, Any] = {"Keys": list(chunk)}
            if attributes:
                request["AttributesToGet"] = list(attributes)
            if consistent:
                request["ConsistentRead"] = True
            payloads.append({"RequestItems": {table_name: request}})

        items: list[Self] = []
        unprocessed: list[dict[str, Any]] = []
        for response in cls._fan_out("batch_get_item", payloads):
            for item in response.get("Responses", {}).get(table_name, []):
                items.append(cls.from_wire(item))
            for wire_key in response.get("UnprocessedKeys", {}).get(table_name, {}).get("Keys", []):
                unprocessed.append(
                    {name: schema.attributes[name].parse_wire(wire_key.get(name)) for name in schema.key_names}
                )

        return BatchGetResult(items, unprocessed=unprocessed)

    @classmethod
    def batch_put(cls, items: Sequence[Any]) -> list[dict[str, Any]]:
        if not isinstance(items, (list, tuple)):
            raise ModelError("batch_put requires items to be a list")
        requests = [{"PutRequest": {"Item": cls.schema.to_wire(item)}} for item in items]
        return cls._batch_write(requests)

    @classmethod
    def batch_delete(cls, keys: Sequence[Any]) -> list[dict[str, Any]]:
        if not isinstance(keys, (list, tuple)):
            raise ModelError("batch_delete requires keys to be a list")
        schema = cls.schema
        requests = [{"DeleteRequest": {"Key": schema.key_to_wire(schema.resolve_key(key))}} for key in keys]
        return cls._batch_write(requests)

    @classmethod
    def _batch_write(cls, requests: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Send write requests in chunks of 25 concurrently; return unprocessed requests.

        Every chunk runs to completion before the first chunk error is raised.
        """
        chunks = _chunked(requests, MAX_BATCH_WRITE_SIZE)
        if not chunks:
            return []

        cls.ensure_table()
        table_name = cls.table.name
        responses = cls._fan_out(
            "batch_write_item", [{"RequestItems": {table_name: list(chunk)}} for chunk in chunks]
        )

        unprocessed: list[dict[str, Any]] = []
        for response in responses:
            unprocessed.extend(response.get("UnprocessedItems", {}).get(table_name, []))
        return unprocessed

    @classmethod
    def _fan_out(cls, method: str, payloads: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Send every payload concurrently and return the responses in order.

        All calls run to completion before the first error is raised.
        """
        if not payloads:
            return []

        with ThreadPoolExecutor(max_workers=min(len(payloads), MAX_BATCH_WORKERS)) as ex:
            futures = [ex.submit(cls._call, method, payload) for payload in payloads]

        responses: list[dict[str, Any]] = []
        first_error: DocmodelError | None = None
        for future in futures:
            try:
                responses.append(future.result())
            except DocmodelError as err:
                if first_error is None:
                    first_error = err
        if first_error is not None:
            raise first_error
        return responses


def compile_model(
    name: str,
    schema: Schema | Mapping[str, Any] | Sequence[Any],
    options: Mapping[str, Any] | None = None,
    ddb: Callable[[], Any] | None = None,
) -> type[Model]:
    """Build a ``Model`` subclass bound to the table ``prefix + name``.

    A raw shape is compiled into a ``Schema`` using the ``throughput``,
    ``timestamps`` and ``use_document_types`` options. Table creation is
    deferred to the first operation.
    """
    merged = {**MODEL_DEFAULTS, **(options or {})}
    if not isinstance(schema, Schema):
        schema = Schema(
            schema,
            throughput=merged.get("throughput"),
            timestamps=merged.get("timestamps"),
            use_document_types=merged.get("use_document_types", True),
        )

    if ddb is None:
        client = boto3.client("dynamodb")
        ddb = lambda: client  # noqa: E731

    table_name = f"{merged['prefix']}{name}"
    logger.debug("compiling model %s", table_name)

    table = Table(
        table_name,
        schema,
        ddb,
        create=bool(merged["create"]),
        update=bool(merged["update"]),
        wait_for_active=bool(merged["wait_for_active"]),
        wait_for_active_timeout=float(merged["wait_for_active_timeout"]),
        poll_interval=float(merged.get("poll_interval", 0.5)),
        sleep=merged.get("sleep", time.sleep),
        clock=merged.get("clock", time.monotonic),
    )

    namespace: dict[str, Any] = {
        "schema": schema,
        "table": table,
        "options": merged,
        "__module__": __name__,
    }
    namespace.update(schema.methods)
    for static_name, fn in schema.statics.items():
        namespace[static_name] = classmethod(fn)

    return type(name, (Model,), namespace)


__all__ = [
    "BatchGetResult",
    "Counts",
    "MODEL_DEFAULTS",
    "Model",
    "Page",
    "compile_model",
]
