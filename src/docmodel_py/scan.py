from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Self

from .conditions import ConditionChain, normalize_operator, operator_values
from .errors import ScanError


class Scan(ConditionChain):
    """Full-table scan with an optional filter chain or filter document."""

    error_type = ScanError
    operation = "scan"

    def __init__(self, model: Any, filter: Any = None, options: Mapping[str, Any] | None = None) -> None:
        super().__init__(model, options)
        self._group_operator: str | None = None

        if isinstance(filter, str):
            self.where(filter)
        elif isinstance(filter, Mapping):
            self.parse_filter_object(filter)

    def where(self, name: str) -> Self:
        return self._select_filter(name, "where")

    def filter(self, name: str) -> Self:
        return self._select_filter(name, "filter")

    def parse_filter_object(self, document: Mapping[str, Any]) -> Self:
        """Expand a declarative filter document into filter conditions.

        ``{"name": v}`` is equality, ``{"name": {"op": v}}`` any comparison,
        ``{"name": {"null": False}}`` tests presence, and ``and``/``or``
        groups (a list or mapping of sub-documents) are expanded recursively.
        The whole filter shares one conditional operator, so a document that
        mixes ``and`` and ``or`` groups is rejected.
        """
        for name, value in document.items():
            if self._error is not None:
                return self

            if name in {"and", "or"}:
                self._group(name.upper())
                conditions = value.values() if isinstance(value, Mapping) else value
                for condition in conditions:
                    self.parse_filter_object(condition)
                continue

            self.where(name)
            if isinstance(value, Mapping) and len(value) == 1:
                op_name, operand = next(iter(value.items()))
                operator = normalize_operator(op_name)
                if operator is None:
                    return self._fail(f"invalid comparison {op_name}")
                if operator == "NULL" and not operand:
                    operator = "NOT_NULL"
                values = operator_values(operator, operand)
                if values is None:
                    return self._fail(f"invalid values for {operator}: {operand!r}")
            else:
                operator = "EQ"
                values = [value]

            self._compare(values, operator)
        return self

    def _group(self, operator: str) -> None:
        if self._group_operator is not None and self._group_operator != operator:
            self._fail("invalid scan state; and/or groups cannot be mixed in one filter")
            return
        self._group_operator = operator
        self.options["conditional_operator"] = operator

    def build_request(self) -> dict[str, Any]:
        self._check_ready()

        request: dict[str, Any] = {"TableName": self.model.table.name}
        if self.filters:
            request["ScanFilter"] = self._render_filters()

        self._apply_options(request)
        return request

    def _send(self, request: dict[str, Any]) -> Any:
        return self.model.table.client.scan(**request)
