from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from docmodel_py.mocks import ANY, FakeDynamoDBClient
from docmodel_py.testkit import FakeClock, active_table, client_error, no_sleep


def test_fake_dynamodb_client_records_and_matches_put_item() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"TableName": "notes", "Item": ANY}, response={"ok": True})

    assert client.put_item(TableName="notes", Item={"pk": {"S": "A"}}) == {"ok": True}

    client.assert_no_pending()
    assert client.calls[0][0] == "put_item"
    assert client.calls_to("put_item") == [{"TableName": "notes", "Item": {"pk": {"S": "A"}}}]


def test_fake_dynamodb_client_rejects_mismatches() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", {"Key": {"pk": {"S": "A"}}})
    with pytest.raises(AssertionError, match="get_item.Key.pk.S: expected 'A', got 'B'"):
        client.get_item(Key={"pk": {"S": "B"}})

    client.expect("query")
    with pytest.raises(AssertionError, match="expected query, got scan"):
        client.scan(TableName="t")

    with pytest.raises(AssertionError, match="unexpected call: scan"):
        client.scan(TableName="t")


def test_fake_dynamodb_client_compares_lists_by_length() -> None:
    client = FakeDynamoDBClient()
    client.expect("batch_get_item", {"Keys": [ANY]})

    with pytest.raises(AssertionError, match="expected 1 items, got 2"):
        client.batch_get_item(Keys=[1, 2])


def test_fake_dynamodb_client_raises_scripted_errors_and_reports_pending() -> None:
    client = FakeDynamoDBClient()
    client.expect("describe_table", error=client_error("ResourceNotFoundException", "missing"))
    client.expect("delete_table")

    with pytest.raises(ClientError) as exc:
        client.describe_table(TableName="t")
    assert exc.value.response["Error"]["Code"] == "ResourceNotFoundException"

    with pytest.raises(AssertionError, match="pending expected calls"):
        client.assert_no_pending()


def test_fake_clock_advances_on_sleep() -> None:
    clock = FakeClock(10.0)

    clock.sleep(1.5)
    clock.sleep(0.5)

    assert clock() == 12.0
    assert clock.sleeps == [1.5, 0.5]
    assert no_sleep(5) is None


def test_active_table_builds_describe_responses() -> None:
    assert active_table("t") == {"Table": {"TableName": "t", "TableStatus": "ACTIVE"}}
    assert active_table("t", indexes=[], status="UPDATING") == {
        "Table": {"TableName": "t", "TableStatus": "UPDATING", "GlobalSecondaryIndexes": []}
    }
