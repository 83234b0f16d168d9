from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Self, TypeAlias, TypeVar

from botocore.exceptions import ClientError

from .attribute import Attribute
from .aws_errors import map_client_error
from .errors import DocmodelError

logger = logging.getLogger(__name__)

TargetKind: TypeAlias = Literal["hash", "range", "filter"]

T = TypeVar("T")

RANGE_OPERATORS = frozenset({"EQ", "LE", "LT", "GE", "GT", "BEGINS_WITH", "BETWEEN"})
FILTER_OPERATORS = frozenset(
    {
        "NULL",
        "NOT_NULL",
        "EQ",
        "NE",
        "LE",
        "LT",
        "GE",
        "GT",
        "CONTAINS",
        "NOT_CONTAINS",
        "BEGINS_WITH",
        "IN",
        "BETWEEN",
    }
)

_NEGATIONS = {
    "EQ": "NE",
    "LT": "GE",
    "LE": "GT",
    "GE": "LT",
    "GT": "LE",
    "CONTAINS": "NOT_CONTAINS",
    "NULL": "NOT_NULL",
}

_OPERATOR_ALIASES = {
    "eq": "EQ",
    "ne": "NE",
    "lt": "LT",
    "le": "LE",
    "ge": "GE",
    "gt": "GT",
    "contains": "CONTAINS",
    "not_contains": "NOT_CONTAINS",
    "notcontains": "NOT_CONTAINS",
    "begins_with": "BEGINS_WITH",
    "beginswith": "BEGINS_WITH",
    "in": "IN",
    "between": "BETWEEN",
    "null": "NULL",
    "not_null": "NOT_NULL",
    "notnull": "NOT_NULL",
}


def normalize_operator(name: str) -> str | None:
    return _OPERATOR_ALIASES.get(str(name).lower())


def operator_values(operator: str, operand: Any) -> list[Any] | None:
    """Values list for a document-form comparison, ``None`` when malformed."""
    if operator in {"NULL", "NOT_NULL"}:
        return []
    if operator in {"IN", "BETWEEN"}:
        if not isinstance(operand, (list, tuple)):
            return None
        if operator == "BETWEEN" and len(operand) != 2:
            return None
        return list(operand)
    return [operand]


@dataclass(frozen=True)
class Target:
    kind: TargetKind
    name: str


@dataclass
class Condition:
    name: str
    values: list[Any] = field(default_factory=list)
    operator: str = ""

    def render(self, attribute: Attribute) -> dict[str, Any]:
        encoded = []
        for value in self.values:
            wire = attribute.to_wire(value, no_set=True, literal=True)
            if wire is not None:
                encoded.append(wire)
        return {"AttributeValueList": encoded, "ComparisonOperator": self.operator}


class Page(list[T]):
    """One page of decoded documents plus the response counters."""

    def __init__(
        self,
        items: Iterable[T] = (),
        *,
        count: int | None = None,
        scanned_count: int | None = None,
        last_key: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(items)
        self.count = count
        self.scanned_count = scanned_count
        self.last_key = last_key


@dataclass(frozen=True)
class Counts:
    count: int
    scanned_count: int


class ConditionChain:
    """Fluent comparison state machine shared by queries and scans.

    A selector moves the chain from idle to awaiting an operator; a
    comparison records the condition and returns to idle. The first misuse
    is stored and raised by ``exec``; later calls leave the chain unchanged.
    Subclasses supply ``build_request`` and ``_send``.
    """

    error_type: type[DocmodelError] = DocmodelError
    operation: str = ""

    def __init__(self, model: Any, options: Mapping[str, Any] | None = None) -> None:
        self.model = model
        self.options: dict[str, Any] = dict(options or {})
        self.filters: dict[str, Condition] = {}
        self._state: Target | None = None
        self._negated = False
        self._error: DocmodelError | None = None

    @property
    def error(self) -> DocmodelError | None:
        return self._error

    def _fail(self, message: str) -> Self:
        if self._error is None:
            logger.debug("%s chain error: %s", self.operation, message)
            self._error = self.error_type(message)
        return self

    def _select_filter(self, name: str, method: str) -> Self:
        if self._error is not None:
            return self
        if self._state is not None:
            return self._fail(f"invalid {self.operation} state; {method}() must follow a comparison")
        if name in self.filters:
            return self._fail(f"invalid {self.operation} state; {name} filter can only be used once")
        self.filters[name] = Condition(name)
        self._state = Target("filter", name)
        return self

    def _accept(self, target: Target, values: list[Any], operator: str) -> str | None:
        if operator not in FILTER_OPERATORS:
            return f"invalid comparison {operator}"
        condition = self.filters[target.name]
        condition.values = values
        condition.operator = operator
        return None

    def _compare(self, values: list[Any], operator: str) -> Self:
        if self._error is not None:
            return self
        if self._state is None:
            return self._fail(f"invalid {self.operation} state; {operator} must follow a selector")

        problem = self._accept(self._state, values, operator)
        if problem is not None:
            return self._fail(problem)

        self._state = None
        self._negated = False
        return self

    def _negate(self, operator: str) -> str:
        return _NEGATIONS[operator] if self._negated else operator

    def _no_negation(self, method: str) -> bool:
        if self._negated:
            self._fail(f"invalid {self.operation} state; {method}() cannot follow not_()")
            return False
        return True

    def not_(self) -> Self:
        self._negated = True
        return self

    def null(self) -> Self:
        return self._compare([], self._negate("NULL"))

    def eq(self, value: Any) -> Self:
        return self._compare([value], self._negate("EQ"))

    def lt(self, value: Any) -> Self:
        return self._compare([value], self._negate("LT"))

    def le(self, value: Any) -> Self:
        return self._compare([value], self._negate("LE"))

    def ge(self, value: Any) -> Self:
        return self._compare([value], self._negate("GE"))

    def gt(self, value: Any) -> Self:
        return self._compare([value], self._negate("GT"))

    def contains(self, value: Any) -> Self:
        return self._compare([value], self._negate("CONTAINS"))

    def begins_with(self, value: Any) -> Self:
        if self._error is not None or not self._no_negation("begins_with"):
            return self
        return self._compare([value], "BEGINS_WITH")

    def in_(self, values: Iterable[Any]) -> Self:
        if self._error is not None or not self._no_negation("in_"):
            return self
        return self._compare(list(values), "IN")

    def between(self, low: Any, high: Any) -> Self:
        if self._error is not None or not self._no_negation("between"):
            return self
        return self._compare([low, high], "BETWEEN")

    def and_(self) -> Self:
        self.options["conditional_operator"] = "AND"
        return self

    def or_(self) -> Self:
        self.options["conditional_operator"] = "OR"
        return self

    def limit(self, limit: int) -> Self:
        self.options["limit"] = limit
        return self

    def consistent(self) -> Self:
        self.options["consistent"] = True
        return self

    def start_at(self, key: Mapping[str, Any]) -> Self:
        self.options["start_key"] = key
        return self

    def attributes(self, names: Iterable[str]) -> Self:
        self.options["attributes"] = list(names)
        return self

    def count(self) -> Self:
        self.options["count"] = True
        return self

    def counts(self) -> Self:
        self.options["counts"] = True
        return self

    def _lookup(self, name: str) -> Attribute:
        attr = self.model.schema.attributes.get(name)
        if attr is None:
            raise self.error_type(f"unknown attribute: {name}")
        return attr

    def _check_ready(self) -> None:
        if self._error is not None:
            raise self._error
        if self._state is not None:
            raise self.error_type(f"invalid {self.operation} state; {self._state.name} is awaiting a comparison")

    def _render_filters(self) -> dict[str, Any]:
        return {name: condition.render(self._lookup(name)) for name, condition in self.filters.items()}

    def _apply_options(self, request: dict[str, Any]) -> None:
        options = self.options
        if len(self.filters) > 1 and options.get("conditional_operator"):
            request["ConditionalOperator"] = options["conditional_operator"]
        if options.get("attributes"):
            request["AttributesToGet"] = list(options["attributes"])
        if options.get("count") or options.get("counts"):
            request["Select"] = "COUNT"
        if options.get("consistent"):
            request["ConsistentRead"] = True
        if options.get("limit"):
            request["Limit"] = options["limit"]
        if options.get("start_key"):
            request["ExclusiveStartKey"] = options["start_key"]

    def exec(self) -> Any:
        request = self.build_request()

        self.model.ensure_table()

        logger.debug("%s request: %r", self.operation, request)
        try:
            response = self._send(request)
        except ClientError as err:
            raise map_client_error(err) from err
        logger.debug("%s response: %r", self.operation, response)

        return self._shape(response, self.model.from_wire)

    def _shape(self, response: Mapping[str, Any], decode: Callable[[Mapping[str, Any]], Any]) -> Any:
        if self.options.get("count"):
            return int(response.get("Count", 0))
        if self.options.get("counts"):
            return Counts(count=int(response.get("Count", 0)), scanned_count=int(response.get("ScannedCount", 0)))

        items = [decode(item) for item in response.get("Items", [])]
        if self.options.get("one"):
            return items[0] if items else None

        return Page(
            items,
            count=response.get("Count"),
            scanned_count=response.get("ScannedCount"),
            last_key=response.get("LastEvaluatedKey"),
        )
