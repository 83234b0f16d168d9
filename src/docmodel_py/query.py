from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Self

from .conditions import (
    RANGE_OPERATORS,
    Condition,
    ConditionChain,
    Target,
    normalize_operator,
    operator_values,
)
from .errors import QueryError

logger = logging.getLogger(__name__)


def _first_item(document: Any) -> tuple[Any, Any] | None:
    if not isinstance(document, Mapping) or not document:
        return None
    return next(iter(document.items()))


def _unwrap_eq(value: Any) -> Any:
    if isinstance(value, Mapping) and value.get("eq") is not None:
        return value["eq"]
    return value


def find_global_index(schema: Any, hash_name: str) -> str | None:
    for index_name, attr in schema.indexes["global"].items():
        if attr.name == hash_name:
            return index_name
    return None


def find_local_index(schema: Any, range_name: str) -> str | None:
    for index_name, attr in schema.indexes["local"].items():
        if attr.name == range_name:
            return index_name
    return None


class Query(ConditionChain):
    """Key-condition query against a table or one of its secondary indexes.

    Accepts ``"id"`` (followed by ``.eq(v)``), ``{"id": v}``,
    ``{"id": {"eq": v}}`` or ``{"hash": {...}, "range": {name: {op: v}}}``.
    """

    error_type = QueryError
    operation = "query"

    def __init__(self, model: Any, query: Any, options: Mapping[str, Any] | None = None) -> None:
        super().__init__(model, options)
        self.hash: Condition | None = None
        self.range: Condition | None = None

        if isinstance(query, str):
            self.hash = Condition(query)
            self._state = Target("hash", query)
            return

        if isinstance(query, Mapping) and "hash" in query:
            hash_item = _first_item(query["hash"])
            if hash_item is None:
                self._fail("query hash condition is empty")
                return
            self.hash = Condition(hash_item[0], [_unwrap_eq(hash_item[1])], "EQ")
            if query.get("range"):
                self.where(query["range"])
            return

        hash_item = _first_item(query)
        if hash_item is None:
            self._fail(f"invalid query: {query!r}")
            return
        self.hash = Condition(hash_item[0], [_unwrap_eq(hash_item[1])], "EQ")

    def where(self, range_key: str | Mapping[str, Any]) -> Self:
        if self._error is not None:
            return self
        if self._state is not None:
            return self._fail("invalid query state; where() must follow a comparison")

        if isinstance(range_key, str):
            self.range = Condition(range_key)
            self._state = Target("range", range_key)
            return self

        range_item = _first_item(range_key)
        comparison = _first_item(range_item[1]) if range_item is not None else None
        if range_item is None or comparison is None:
            return self._fail(f"invalid range condition: {range_key!r}")

        operator = normalize_operator(comparison[0])
        if operator not in RANGE_OPERATORS:
            return self._fail(f"invalid query state; {comparison[0]} is not a range key comparison")
        values = operator_values(operator, comparison[1])
        if values is None:
            return self._fail(f"invalid values for {operator}: {comparison[1]!r}")

        self.range = Condition(range_item[0], values, operator)
        return self

    def filter(self, name: str) -> Self:
        return self._select_filter(name, "filter")

    def _accept(self, target: Target, values: list[Any], operator: str) -> str | None:
        if target.kind == "hash":
            if operator != "EQ":
                return "invalid query state; only eq() can follow query()"
            assert self.hash is not None
            self.hash.values = values
            self.hash.operator = operator
            return None

        if target.kind == "range":
            if operator not in RANGE_OPERATORS:
                return f"invalid query state; {operator} is not a range key comparison"
            assert self.range is not None
            self.range.values = values
            self.range.operator = operator
            return None

        return super()._accept(target, values, operator)

    def one(self) -> Self:
        self.options["one"] = True
        return self

    def descending(self) -> Self:
        self.options["descending"] = True
        return self

    def ascending(self) -> Self:
        self.options["descending"] = False
        return self

    def build_request(self) -> dict[str, Any]:
        self._check_ready()
        assert self.hash is not None

        schema = self.model.schema
        hash_attr = self._lookup(self.hash.name)
        hash_value = hash_attr.to_wire(self.hash.values[0] if self.hash.values else None, literal=True)
        if hash_value is None:
            raise QueryError(f"hash key value required: {self.hash.name}")

        request: dict[str, Any] = {"TableName": self.model.table.name, "KeyConditions": {}}

        index_name = None
        if self.hash.name != schema.hash_key.name:
            index_name = find_global_index(schema, self.hash.name)
            logger.debug("query is on global secondary index %s", index_name)

        request["KeyConditions"][self.hash.name] = {
            "AttributeValueList": [hash_value],
            "ComparisonOperator": "EQ",
        }

        if self.range is not None:
            range_attr = self._lookup(self.range.name)
            if index_name is None and (schema.range_key is None or schema.range_key.name != self.range.name):
                index_name = find_local_index(schema, self.range.name)
                logger.debug("query is on local secondary index %s", index_name)
            request["KeyConditions"][self.range.name] = self.range.render(range_attr)

        if index_name is not None:
            request["IndexName"] = index_name

        if self.filters:
            request["QueryFilter"] = self._render_filters()

        self._apply_options(request)
        if self.options.get("one"):
            request["Limit"] = 1
        if self.options.get("descending"):
            request["ScanIndexForward"] = False

        return request

    def _send(self, request: dict[str, Any]) -> Any:
        return self.model.table.client.query(**request)
