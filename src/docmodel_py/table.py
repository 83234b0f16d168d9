from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

from .attribute import Attribute, IndexSpec
from .aws_errors import map_client_error
from .errors import NotFoundError, SchemaError, TableError
from .schema import Schema

logger = logging.getLogger(__name__)

_KEY_TAGS = frozenset({"S", "N", "B"})
_COMPARED_FIELDS = ("IndexName", "KeySchema", "Projection", "ProvisionedThroughput")


def _key_type(attr: Attribute) -> str:
    if attr.is_set or attr.type.wire_tag not in _KEY_TAGS:
        raise SchemaError(f"key attribute must be a scalar S, N or B type: {attr.name}")
    return attr.type.wire_tag


def _projection(index: IndexSpec) -> dict[str, Any]:
    if isinstance(index.project, tuple):
        return {"ProjectionType": "INCLUDE", "NonKeyAttributes": list(index.project)}
    if index.project:
        return {"ProjectionType": "ALL"}
    return {"ProjectionType": "KEYS_ONLY"}


def _throughput(throughput: Mapping[str, int]) -> dict[str, int]:
    return {"ReadCapacityUnits": throughput["read"], "WriteCapacityUnits": throughput["write"]}


def build_table_request(name: str, schema: Schema) -> dict[str, Any]:
    """Derive the create-table request for ``schema``; a pure function of its inputs."""
    assert schema.hash_key is not None

    key_attrs: dict[str, Attribute] = {}

    def add_key_attr(attr: Attribute | None) -> None:
        if attr is not None:
            key_attrs[attr.name] = attr

    add_key_attr(schema.hash_key)
    add_key_attr(schema.range_key)
    for index_name, attr in schema.indexes["global"].items():
        add_key_attr(attr)
        range_name = attr.indexes[index_name].range_key
        if range_name is not None:
            add_key_attr(schema.attributes[range_name])
    for attr in schema.indexes["local"].values():
        add_key_attr(attr)

    key_schema = [{"AttributeName": schema.hash_key.name, "KeyType": "HASH"}]
    if schema.range_key is not None:
        key_schema.append({"AttributeName": schema.range_key.name, "KeyType": "RANGE"})

    request: dict[str, Any] = {
        "AttributeDefinitions": [
            {"AttributeName": attr_name, "AttributeType": _key_type(attr)} for attr_name, attr in key_attrs.items()
        ],
        "TableName": name,
        "KeySchema": key_schema,
        "ProvisionedThroughput": _throughput(schema.throughput),
    }

    local_indexes = []
    for index_name, attr in schema.indexes["local"].items():
        index = attr.indexes[index_name]
        local_indexes.append(
            {
                "IndexName": index_name,
                "KeySchema": [
                    {"AttributeName": schema.hash_key.name, "KeyType": "HASH"},
                    {"AttributeName": attr.name, "KeyType": "RANGE"},
                ],
                "Projection": _projection(index),
            }
        )

    global_indexes = []
    for index_name, attr in schema.indexes["global"].items():
        index = attr.indexes[index_name]
        index_key_schema = [{"AttributeName": attr.name, "KeyType": "HASH"}]
        if index.range_key is not None:
            index_key_schema.append({"AttributeName": index.range_key, "KeyType": "RANGE"})
        global_indexes.append(
            {
                "IndexName": index_name,
                "KeySchema": index_key_schema,
                "Projection": _projection(index),
                "ProvisionedThroughput": _throughput(index.throughput or schema.throughput),
            }
        )

    if local_indexes:
        request["LocalSecondaryIndexes"] = local_indexes
    if global_indexes:
        request["GlobalSecondaryIndexes"] = global_indexes

    return request


@dataclass(frozen=True)
class IndexDiff:
    create: list[dict[str, Any]] = field(default_factory=list)
    delete: list[dict[str, Any]] = field(default_factory=list)
    both: list[dict[str, Any]] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not (self.create or self.delete or self.both)


def _comparable(index: Mapping[str, Any]) -> dict[str, Any]:
    out = {k: index[k] for k in _COMPARED_FIELDS if k in index}
    throughput = out.get("ProvisionedThroughput")
    if throughput is not None:
        out["ProvisionedThroughput"] = {
            k: throughput[k] for k in ("ReadCapacityUnits", "WriteCapacityUnits") if k in throughput
        }
    return out


def diff_indexes(local_request: Mapping[str, Any], remote_table: Mapping[str, Any]) -> IndexDiff:
    """Compare global secondary indexes of a derived request and a described table."""
    local = [_comparable(i) for i in local_request.get("GlobalSecondaryIndexes") or []]
    remote = [_comparable(i) for i in remote_table.get("GlobalSecondaryIndexes") or []]

    local_names = {i["IndexName"]: i for i in local}
    remote_names = {i["IndexName"]: i for i in remote}

    return IndexDiff(
        create=[i for i in local if i["IndexName"] not in remote_names],
        delete=[i for i in remote if i["IndexName"] not in local_names],
        both=[i for i in local if i["IndexName"] in remote_names and i != remote_names[i["IndexName"]]],
    )


class Table:
    """Lifecycle of the table backing one model.

    ``init`` runs once per table (guarded by a lock): it describes the
    table, creates it when missing and reconciles global indexes when
    ``update`` is set. Index changes are applied one at a time, each
    followed by a wait for ACTIVE.
    """

    def __init__(
        self,
        name: str,
        schema: Schema,
        ddb: Callable[[], Any],
        *,
        create: bool = True,
        update: bool = False,
        wait_for_active: bool = True,
        wait_for_active_timeout: float = 180.0,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.schema = schema
        self._ddb = ddb
        self.create_missing = create
        self.update_indexes = update
        self.wait_on_init = wait_for_active
        self.wait_for_active_timeout = wait_for_active_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self.initialized = False
        self.active = False

    def __repr__(self) -> str:
        return f"Table({self.name!r})"

    @property
    def client(self) -> Any:
        return self._ddb()

    def _call(self, method: str, **request: Any) -> dict[str, Any]:
        logger.debug("%s %s: %r", method, self.name, request)
        try:
            return dict(getattr(self.client, method)(**request))
        except ClientError as err:
            raise map_client_error(err) from err

    def build_request(self) -> dict[str, Any]:
        return build_table_request(self.name, self.schema)

    def describe(self) -> dict[str, Any]:
        return self._call("describe_table", TableName=self.name)

    def create(self) -> dict[str, Any]:
        logger.info("creating table %s", self.name)
        return self._call("create_table", **self.build_request())

    def delete(self) -> dict[str, Any]:
        logger.info("deleting table %s", self.name)
        self.active = False
        return self._call("delete_table", TableName=self.name)

    def create_index(self, attribute_definitions: list[dict[str, Any]], index: Mapping[str, Any]) -> dict[str, Any]:
        logger.info("creating index %s on %s", index["IndexName"], self.name)
        self.active = False
        response = self._call(
            "update_table",
            TableName=self.name,
            AttributeDefinitions=attribute_definitions,
            GlobalSecondaryIndexUpdates=[{"Create": dict(index)}],
        )
        self._poll_until_active()
        return response

    def delete_index(self, index_name: str) -> dict[str, Any]:
        logger.info("deleting index %s on %s", index_name, self.name)
        self.active = False
        response = self._call(
            "update_table",
            TableName=self.name,
            GlobalSecondaryIndexUpdates=[{"Delete": {"IndexName": index_name}}],
        )
        self._poll_until_active()
        return response

    def init(self) -> None:
        with self._lock:
            if self.initialized:
                return
            logger.debug("initializing table %s", self.name)

            if not self.create_missing:
                self.initialized = True
                return

            try:
                description = self.describe()
            except NotFoundError:
                logger.debug("table %s does not exist", self.name)
                self.create()
            else:
                self._sync_indexes(description.get("Table", {}))

            self.initialized = True
            if self.wait_on_init:
                self._poll_until_active()

    def _sync_indexes(self, remote_table: Mapping[str, Any]) -> None:
        local = self.build_request()
        diff = diff_indexes(local, remote_table)
        if diff.in_sync:
            return

        if not self.update_indexes:
            if diff.create or diff.delete:
                raise TableError(f"indexes are not synchronized and update is disabled: {self.name}")
            logger.warning(
                "indexes differ from the schema on %s: %s",
                self.name,
                [i["IndexName"] for i in diff.both],
            )
            return

        for index in diff.delete:
            self.delete_index(index["IndexName"])
        for index in diff.both:
            self.delete_index(index["IndexName"])
            self.create_index(local["AttributeDefinitions"], index)
        for index in diff.create:
            self.create_index(local["AttributeDefinitions"], index)

    def wait_for_active(self, timeout: float | None = None) -> None:
        self.init()
        if self.active:
            return
        self._poll_until_active(timeout)

    def _poll_until_active(self, timeout: float | None = None) -> None:
        if timeout is None:
            timeout = self.wait_for_active_timeout

        deadline = self._clock() + timeout
        while self._clock() < deadline:
            try:
                table = self.describe().get("Table", {})
            except NotFoundError:
                table = {}

            active = table.get("TableStatus") == "ACTIVE"
            for index in table.get("GlobalSecondaryIndexes") or []:
                logger.debug("index %s status is %s", index.get("IndexName"), index.get("IndexStatus"))
                if index.get("IndexStatus") != "ACTIVE":
                    active = False

            if active:
                self.active = True
                return
            self._sleep(self.poll_interval)

        raise TableError(f"wait for active timed out after {timeout} seconds: {self.name}")
