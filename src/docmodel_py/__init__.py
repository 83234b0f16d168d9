from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .attribute import ATTRIBUTE_TYPES, Attribute, AttributeType, IndexSpec, resolve_type
from .conditions import Counts, Page
from .errors import (
    AwsError,
    ConditionFailedError,
    DocmodelError,
    ModelError,
    NotFoundError,
    QueryError,
    ScanError,
    SchemaError,
    TableError,
    ValidationError,
)
from .model import BatchGetResult, Model, compile_model
from .query import Query
from .scan import Scan
from .schema import Schema, Timestamps
from .table import IndexDiff, Table, build_table_request, diff_indexes
from .update_expression import UpdateOperations, build_update_request
from .virtual import VirtualType

if TYPE_CHECKING:
    from .context import Docmodel, create_client_config


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {"Docmodel", "create_client_config"}:
        from . import context

        return getattr(context, name)
    raise AttributeError(name)


__all__ = [
    "ATTRIBUTE_TYPES",
    "Attribute",
    "AttributeType",
    "AwsError",
    "BatchGetResult",
    "ConditionFailedError",
    "Counts",
    "Docmodel",
    "DocmodelError",
    "IndexDiff",
    "IndexSpec",
    "Model",
    "ModelError",
    "NotFoundError",
    "Page",
    "Query",
    "QueryError",
    "Scan",
    "ScanError",
    "Schema",
    "SchemaError",
    "Table",
    "TableError",
    "Timestamps",
    "UpdateOperations",
    "ValidationError",
    "VirtualType",
    "__repo_version__",
    "__version__",
    "build_table_request",
    "build_update_request",
    "compile_model",
    "create_client_config",
    "diff_indexes",
    "resolve_type",
]
