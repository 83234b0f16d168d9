from __future__ import annotations

import os
import uuid

import boto3
import pytest

from docmodel_py import ConditionFailedError
from docmodel_py.context import Docmodel


def _dynamodb_endpoint() -> str:
    return os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000")


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=_dynamodb_endpoint(),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def test_model_crud_round_trip_and_conditions() -> None:
    client = _client()
    dm = Docmodel(client, defaults={"prefix": f"docmodel_py_crud_{uuid.uuid4().hex[:12]}_"})
    Note = dm.model(
        "Note",
        {
            "pk": {"type": str, "hash_key": True},
            "sk": {"type": str, "range_key": True},
            "value": {"type": int, "default": 0},
            "tags": [str],
            "payload": {"a": int, "b": str},
        },
        timestamps=True,
    )

    try:
        note = Note.create({"pk": "A", "sk": "B", "value": 1, "tags": ["x", "y"], "payload": {"a": 1}})

        with pytest.raises(ConditionFailedError):
            Note.create({"pk": "A", "sk": "B"})

        got = Note.get({"pk": "A", "sk": "B"}, consistent=True)
        assert got is not None
        assert got.value == 1
        assert got.tags == {"x", "y"}
        assert got.payload == {"a": 1}
        assert got.created_at == note.created_at.replace(microsecond=note.created_at.microsecond // 1000 * 1000)

        updated = Note.update(
            {"pk": "A", "sk": "B"},
            {"$ADD": {"value": 2}, "$DELETE": {"tags": ["x"]}},
            condition="#v = :value",
            condition_names={"v": "value"},
            condition_values={"value": 1},
        )
        assert updated is not None
        assert updated.value == 3
        assert updated.tags == {"y"}

        with pytest.raises(ConditionFailedError):
            Note.update(
                {"pk": "A", "sk": "B"},
                {"value": 10},
                condition="#v = :value",
                condition_names={"v": "value"},
                condition_values={"value": 1},
            )

        deleted = Note.delete({"pk": "A", "sk": "B"}, update=True)
        assert deleted.value == 3
        assert Note.get({"pk": "A", "sk": "B"}) is None
    finally:
        Note.table.delete()
