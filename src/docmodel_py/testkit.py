from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from .mocks import ANY, FakeDynamoDBClient


def no_sleep(_: float) -> None:
    return None


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def active_table(name: str, *, indexes: list[dict[str, Any]] | None = None, status: str = "ACTIVE") -> dict[str, Any]:
    """A ``describe_table`` response for a table in ``status``."""
    table: dict[str, Any] = {"TableName": name, "TableStatus": status}
    if indexes is not None:
        table["GlobalSecondaryIndexes"] = indexes
    return {"Table": table}


__all__ = [
    "ANY",
    "FakeClock",
    "FakeDynamoDBClient",
    "active_table",
    "client_error",
    "no_sleep",
]
