from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import ModelError, ValidationError

logger = logging.getLogger(__name__)

WIRE_TAGS = frozenset({"S", "N", "B", "BOOL", "NULL", "M", "L", "SS", "NS", "BS"})


def _is_wire_value(value: Any) -> bool:
    return isinstance(value, Mapping) and len(value) == 1 and next(iter(value)) in WIRE_TAGS


def _is_removal(value: Any, allow_empty_array: bool) -> bool:
    if value is None or (isinstance(value, str) and value == ""):
        return True
    if not allow_empty_array and isinstance(value, (list, tuple, set, frozenset)) and len(value) == 0:
        return True
    return False


@dataclass
class UpdateOperations:
    """Encoded update operations keyed by attribute name.

    ``delete`` holds set-element removals; a plain attribute removal lives
    in ``remove`` and carries no value.
    """

    if_not_exists_set: dict[str, Any] = field(default_factory=dict)
    set: dict[str, Any] = field(default_factory=dict)
    add: dict[str, Any] = field(default_factory=dict)
    delete: dict[str, Any] = field(default_factory=dict)
    remove: dict[str, None] = field(default_factory=dict)

    def touches(self, name: str) -> bool:
        return any(name in ops for ops in (self.if_not_exists_set, self.set, self.add, self.delete, self.remove))

    def render(self) -> tuple[str, dict[str, str], dict[str, Any]]:
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        counter = itertools.count()

        def placeholders(name: str, value: Any = None) -> tuple[str, str]:
            i = next(counter)
            name_ref = f"#_n{i}"
            value_ref = f":_p{i}"
            names[name_ref] = name
            if value is not None:
                values[value_ref] = value
            return name_ref, value_ref

        set_items: list[str] = []
        for name, value in self.if_not_exists_set.items():
            n, v = placeholders(name, value)
            set_items.append(f"{n} = if_not_exists({n}, {v})")
        for name, value in self.set.items():
            n, v = placeholders(name, value)
            set_items.append(f"{n} = {v}")

        add_items = [" ".join(placeholders(name, value)) for name, value in self.add.items()]
        delete_items = [" ".join(placeholders(name, value)) for name, value in self.delete.items()]
        remove_items = [placeholders(name)[0] for name in self.remove]

        clauses = []
        for keyword, items in (("SET", set_items), ("ADD", add_items), ("DELETE", delete_items), ("REMOVE", remove_items)):
            if items:
                clauses.append(f"{keyword} {', '.join(items)}")

        return " ".join(clauses), names, values


def collect_operations(
    schema: Any,
    update: Mapping[str, Any],
    *,
    create_required: bool = False,
    update_timestamps: bool = True,
    allow_empty_array: bool = False,
) -> UpdateOperations:
    if not isinstance(update, Mapping):
        raise ModelError("update must be a mapping")

    ops = UpdateOperations()

    put = update.get("$PUT")
    if put is not None or not any(k in update for k in ("$PUT", "$DELETE", "$ADD")):
        for name, value in (put if put is not None else update).items():
            attr = schema.attributes.get(name)
            if attr is None:
                logger.debug("ignoring update for undeclared attribute %s", name)
                continue
            encoded = None if _is_removal(value, allow_empty_array) else attr.to_wire(value)
            if encoded is None:
                ops.remove[name] = None
            else:
                ops.set[name] = encoded

    for name, value in (update.get("$DELETE") or {}).items():
        attr = schema.attributes.get(name)
        if attr is None:
            logger.debug("ignoring delete for undeclared attribute %s", name)
            continue
        if value is not None and attr.is_set:
            encoded = attr.to_wire(value)
            if encoded is not None:
                ops.delete[name] = encoded
        else:
            ops.remove[name] = None

    for name, value in (update.get("$ADD") or {}).items():
        attr = schema.attributes.get(name)
        if attr is None:
            logger.debug("ignoring add for undeclared attribute %s", name)
            continue
        encoded = attr.to_wire(value)
        if encoded is not None:
            ops.add[name] = encoded

    timestamps = schema.timestamps
    if update_timestamps and timestamps is not None:
        created = schema.attributes[timestamps.created_at]
        updated = schema.attributes[timestamps.updated_at]
        ops.if_not_exists_set[timestamps.created_at] = created.to_wire(created.default())
        ops.set[timestamps.updated_at] = updated.to_wire(updated.default())

    if create_required:
        skipped = set(schema.key_names)
        if timestamps is not None:
            skipped.update((timestamps.created_at, timestamps.updated_at))
        for name, attr in schema.attributes.items():
            if not attr.required or name in skipped or ops.touches(name):
                continue
            if attr.default is None:
                raise ValidationError(f"required attribute {name!r} does not have a default")
            ops.if_not_exists_set[name] = attr.to_wire(attr.default())

    return ops


def apply_condition(
    request: dict[str, Any],
    schema: Any,
    condition: str | None,
    names: Mapping[str, str] | None = None,
    values: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Merge a caller condition expression and its placeholders into ``request``.

    ``names`` maps ``#name`` placeholders (given without the ``#``) to
    attribute names; ``values`` maps ``:name`` placeholders to values encoded
    with the schema attribute of the same name, or to ready wire values.
    """
    if not condition:
        return request

    existing = request.get("ConditionExpression")
    request["ConditionExpression"] = f"({existing}) and ({condition})" if existing else condition

    if names:
        target = request.setdefault("ExpressionAttributeNames", {})
        for name, attr_name in names.items():
            placeholder = f"#{name}"
            if target.get(placeholder, attr_name) != attr_name:
                raise ModelError(f"condition name collides with an existing placeholder: {placeholder}")
            target[placeholder] = attr_name

    if values:
        target = request.setdefault("ExpressionAttributeValues", {})
        for name, value in values.items():
            attr = schema.attributes.get(name)
            if attr is not None:
                encoded = attr.to_wire(value, literal=True)
            elif _is_wire_value(value):
                encoded = dict(value)
            else:
                raise ModelError(
                    f"invalid condition value: {name}; the name must be in the schema or the value a full wire value"
                )
            placeholder = f":{name}"
            if placeholder in target:
                raise ModelError(f"condition value collides with an existing placeholder: {placeholder}")
            target[placeholder] = encoded

    return request


def build_update_request(
    schema: Any,
    table_name: str,
    key: Mapping[str, Any],
    update: Mapping[str, Any],
    *,
    create_required: bool = False,
    update_timestamps: bool = True,
    allow_empty_array: bool = False,
    condition: str | None = None,
    condition_names: Mapping[str, str] | None = None,
    condition_values: Mapping[str, Any] | None = None,
    return_values: str = "ALL_NEW",
) -> dict[str, Any]:
    ops = collect_operations(
        schema,
        update,
        create_required=create_required,
        update_timestamps=update_timestamps,
        allow_empty_array=allow_empty_array,
    )
    expression, names, values = ops.render()

    request: dict[str, Any] = {
        "TableName": table_name,
        "Key": schema.key_to_wire(key),
        "ReturnValues": return_values,
        "ExpressionAttributeNames": names,
        "ExpressionAttributeValues": values,
    }
    if expression:
        request["UpdateExpression"] = expression

    apply_condition(request, schema, condition, condition_names, condition_values)

    # Empty expressions and empty attribute maps are rejected on the wire.
    if not request["ExpressionAttributeNames"]:
        del request["ExpressionAttributeNames"]
    if not request["ExpressionAttributeValues"]:
        del request["ExpressionAttributeValues"]

    logger.debug("update request: %r", request)
    return request
