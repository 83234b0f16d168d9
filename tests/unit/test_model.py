from __future__ import annotations

from typing import Any

import pytest

from docmodel_py import (
    AwsError,
    BatchGetResult,
    ConditionFailedError,
    Model,
    ModelError,
    NotFoundError,
    Schema,
    compile_model,
)
from docmodel_py.context import Docmodel
from docmodel_py.testkit import ANY, FakeDynamoDBClient, active_table, client_error, no_sleep

CAT_SHAPE: dict[str, Any] = {"id": str, "name": str, "lives": {"type": int, "default": 9}}
DOG_SHAPE: dict[str, Any] = {"owner": str, "name": {"type": str, "range_key": True}, "age": int}


@pytest.fixture
def fake() -> FakeDynamoDBClient:
    return FakeDynamoDBClient()


@pytest.fixture
def dm(fake: FakeDynamoDBClient) -> Docmodel:
    return Docmodel(fake, defaults={"create": False, "wait_for_active": False})


@pytest.fixture
def Cat(dm: Docmodel) -> Any:
    return dm.model("Cat", CAT_SHAPE)


@pytest.fixture
def Dog(dm: Docmodel) -> Any:
    return dm.model("Dog", DOG_SHAPE)


def _exact(expected: dict[str, Any]) -> Any:
    def check(req: Any) -> None:
        assert req == expected

    return check


def test_compiled_model_is_a_model_subclass(Cat: Any) -> None:
    assert issubclass(Cat, Model)
    assert Cat.__name__ == "Cat"
    assert Cat.table.name == "Cat"
    assert Cat.schema.hash_key.name == "id"


def test_documents_hold_fields_as_attributes(Cat: Any) -> None:
    cat = Cat({"id": "c1"}, name="Tom")

    assert cat.id == "c1"
    assert cat.name == "Tom"
    assert cat.to_dict() == {"id": "c1", "name": "Tom"}
    assert cat == Cat(id="c1", name="Tom")
    assert cat != Cat(id="c2")
    assert repr(cat) == "Cat(id='c1', name='Tom')"


def test_put_sends_the_encoded_item(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect(
        "put_item",
        _exact({"TableName": "Cat", "Item": {"id": {"S": "c1"}, "name": {"S": "Tom"}, "lives": {"N": "9"}}}),
    )

    cat = Cat(id="c1", name="Tom").put()

    assert cat.lives == 9
    fake.assert_no_pending()


def test_create_refuses_to_overwrite(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect(
        "put_item",
        {"ConditionExpression": "attribute_not_exists(#_hk)", "ExpressionAttributeNames": {"#_hk": "id"}},
    )
    fake.expect("put_item", error=client_error("ConditionalCheckFailedException", "exists"))

    created = Cat.create({"id": "c1"})
    assert isinstance(created, Cat)

    with pytest.raises(ConditionFailedError, match="exists"):
        Cat.create(Cat(id="c1"))


def test_key_conditions_use_a_name_placeholder_for_reserved_words(dm: Docmodel, fake: FakeDynamoDBClient) -> None:
    User = dm.model("User", {"name": str, "age": int})
    fake.expect(
        "put_item",
        _exact(
            {
                "TableName": "User",
                "Item": {"name": {"S": "bob"}, "age": {"N": "3"}},
                "ConditionExpression": "attribute_not_exists(#_hk)",
                "ExpressionAttributeNames": {"#_hk": "name"},
            }
        ),
    )
    fake.expect(
        "delete_item",
        {"ConditionExpression": "attribute_exists(#_hk)", "ExpressionAttributeNames": {"#_hk": "name"}},
    )

    User.create({"name": "bob", "age": 3})
    User.delete("bob", update=True)
    fake.assert_no_pending()


def test_put_merges_caller_conditions(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect(
        "put_item",
        {
            "ConditionExpression": "(attribute_not_exists(#_hk)) and (#l > :lives)",
            "ExpressionAttributeNames": {"#_hk": "id", "#l": "lives"},
            "ExpressionAttributeValues": {":lives": {"N": "3"}},
        },
    )

    Cat(id="c1").save(False, condition="#l > :lives", condition_names={"l": "lives"}, condition_values={"lives": 3})
    fake.assert_no_pending()


def test_get_decodes_the_item(Dog: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect(
        "get_item",
        _exact(
            {
                "TableName": "Dog",
                "Key": {"owner": {"S": "bob"}, "name": {"S": "fido"}},
                "AttributesToGet": ["age"],
                "ConsistentRead": True,
            }
        ),
        response={"Item": {"owner": {"S": "bob"}, "name": {"S": "fido"}, "age": {"N": "3"}}},
    )
    fake.expect("get_item", response={})

    assert Dog.get({"owner": "bob", "name": "fido"}, ["age"], consistent=True) == Dog(owner="bob", name="fido", age=3)
    assert Dog.get({"owner": "bob", "name": "rex"}) is None


def test_get_requires_the_range_key(Dog: Any, fake: FakeDynamoDBClient) -> None:
    with pytest.raises(ModelError, match="range key required: name"):
        Dog.get("bob")
    assert fake.calls == []


def test_update_returns_the_new_document(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect(
        "update_item",
        {
            "Key": {"id": {"S": "c1"}},
            "UpdateExpression": "ADD #_n0 :_p0",
            "ExpressionAttributeValues": {":_p0": {"N": "-1"}},
            "ReturnValues": "ALL_NEW",
        },
        response={"Attributes": {"id": {"S": "c1"}, "lives": {"N": "8"}}},
    )
    fake.expect("update_item", {"ReturnValues": "NONE"}, response={})

    assert Cat.update("c1", {"$ADD": {"lives": -1}}) == Cat(id="c1", lives=8)
    assert Cat.update({"id": "c1"}, {"name": "Tom"}, return_values="NONE") is None


def test_update_with_no_key_uses_key_defaults(dm: Docmodel, fake: FakeDynamoDBClient) -> None:
    Ticket = dm.model("Ticket", {"id": {"type": str, "default": "fixed"}, "state": str})
    fake.expect("update_item", {"Key": {"id": {"S": "fixed"}}})

    Ticket.update(None, {"state": "open"})
    fake.assert_no_pending()


def test_update_with_no_key_and_no_default_fails(Cat: Any) -> None:
    with pytest.raises(ModelError, match="key required"):
        Cat.update(None, {"name": "Tom"})


def test_delete_by_key_and_by_document(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect("delete_item", _exact({"TableName": "Cat", "Key": {"id": {"S": "c1"}}}))
    fake.expect(
        "delete_item",
        _exact(
            {
                "TableName": "Cat",
                "Key": {"id": {"S": "c2"}},
                "ReturnValues": "ALL_OLD",
                "ConditionExpression": "attribute_exists(#_hk)",
                "ExpressionAttributeNames": {"#_hk": "id"},
            }
        ),
        response={"Attributes": {"id": {"S": "c2"}, "name": {"S": "Tom"}, "lives": {"N": "9"}}},
    )

    deleted = Cat.delete("c1")
    assert deleted == Cat(id="c1")

    cat = Cat(id="c2")
    assert cat.delete(update=True) is cat
    assert cat == Cat(id="c2", name="Tom", lives=9)
    fake.assert_no_pending()


def test_delete_document_requires_key_fields(Dog: Any) -> None:
    with pytest.raises(ModelError, match="range key required: name"):
        Dog(owner="bob").delete()


def test_delete_of_missing_item_with_update_raises(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect("delete_item", error=client_error("ConditionalCheckFailedException"))

    with pytest.raises(ConditionFailedError, match="conditional check failed"):
        Cat.delete("gone", update=True)


def test_transport_errors_are_mapped(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect("get_item", error=client_error("ResourceNotFoundException", "no table"))
    fake.expect("put_item", error=client_error("ProvisionedThroughputExceededException", "slow down"))

    with pytest.raises(NotFoundError, match="no table"):
        Cat.get("c1")
    with pytest.raises(AwsError) as exc:
        Cat(id="c1").put()
    assert exc.value.code == "ProvisionedThroughputExceededException"


def test_batch_get_decodes_items_and_unprocessed_keys(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect(
        "batch_get_item",
        _exact(
            {
                "RequestItems": {
                    "Cat": {"Keys": [{"id": {"S": "a"}}, {"id": {"S": "b"}}], "AttributesToGet": ["id", "name"]}
                }
            }
        ),
        response={
            "Responses": {"Cat": [{"id": {"S": "a"}, "name": {"S": "Tom"}}]},
            "UnprocessedKeys": {"Cat": {"Keys": [{"id": {"S": "b"}}]}},
        },
    )

    result = Cat.batch_get(["a", "b"], attributes=["id", "name"])

    assert isinstance(result, BatchGetResult)
    assert list(result) == [Cat(id="a", name="Tom")]
    assert result.unprocessed == [{"id": "b"}]


def test_batch_get_splits_large_requests(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect("batch_get_item", response={"Responses": {"Cat": []}})
    fake.expect("batch_get_item", response={"Responses": {"Cat": []}})

    Cat.batch_get([f"c{i}" for i in range(150)])

    sizes = sorted(len(req["RequestItems"]["Cat"]["Keys"]) for req in fake.calls_to("batch_get_item"))
    assert sizes == [50, 100]


def test_batch_get_raises_the_chunk_error_after_all_chunks_finish(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect("batch_get_item", error=client_error("ProvisionedThroughputExceededException", "slow down"))
    fake.expect("batch_get_item", response={"Responses": {"Cat": []}})

    with pytest.raises(AwsError, match="slow down"):
        Cat.batch_get([f"c{i}" for i in range(150)])
    assert len(fake.calls_to("batch_get_item")) == 2


def test_batch_operations_require_lists(Cat: Any) -> None:
    with pytest.raises(ModelError, match="batch_get requires keys to be a list"):
        Cat.batch_get("c1")
    with pytest.raises(ModelError, match="batch_put requires items to be a list"):
        Cat.batch_put({"id": "c1"})
    with pytest.raises(ModelError, match="batch_delete requires keys to be a list"):
        Cat.batch_delete("c1")


def test_batch_put_writes_chunks_of_twenty_five(Cat: Any, fake: FakeDynamoDBClient) -> None:
    leftover = {"PutRequest": {"Item": {"id": {"S": "c0"}}}}
    fake.expect("batch_write_item", response={"UnprocessedItems": {"Cat": [leftover]}})
    fake.expect("batch_write_item", response={})

    unprocessed = Cat.batch_put([{"id": f"c{i}"} for i in range(30)])

    sizes = sorted(len(req["RequestItems"]["Cat"]) for req in fake.calls_to("batch_write_item"))
    assert sizes == [5, 25]
    assert unprocessed == [leftover]


def test_batch_write_raises_the_chunk_error_after_all_chunks_finish(Cat: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect("batch_write_item", error=client_error("ValidationException", "bad item"))
    fake.expect("batch_write_item", response={})

    with pytest.raises(AwsError, match="bad item"):
        Cat.batch_put([{"id": f"c{i}"} for i in range(30)])
    assert len(fake.calls_to("batch_write_item")) == 2


def test_batch_delete_sends_delete_requests(Dog: Any, fake: FakeDynamoDBClient) -> None:
    fake.expect(
        "batch_write_item",
        _exact(
            {
                "RequestItems": {
                    "Dog": [{"DeleteRequest": {"Key": {"owner": {"S": "bob"}, "name": {"S": "fido"}}}}],
                }
            }
        ),
    )

    assert Dog.batch_delete([{"owner": "bob", "name": "fido"}]) == []
    assert Dog.batch_put([]) == []
    fake.assert_no_pending()


def test_methods_statics_and_virtuals_reach_the_compiled_class(fake: FakeDynamoDBClient) -> None:
    schema = Schema({"id": str, "first": str, "last": str})
    schema.method("greeting", lambda self: f"hi {self.first}")
    schema.static("table_name", lambda cls: cls.table.name)
    full = schema.virtual("full_name")
    full.get(lambda doc: f"{doc.first} {doc.last}")
    full.set(lambda doc, value: doc.__dict__.update(zip(("first", "last"), value.split(" "), strict=True)))

    Person = compile_model("Person", schema, {"create": False, "wait_for_active": False, "prefix": "app_"}, lambda: fake)
    person = Person(id="p1", first="Ada", last="Lovelace")

    assert person.greeting() == "hi Ada"
    assert Person.table_name() == "app_Person"
    assert person.get_virtual("full_name") == "Ada Lovelace"
    person.set_virtual("full_name", "Grace Hopper")
    assert (person.first, person.last) == ("Grace", "Hopper")
    assert "full_name" not in person.to_wire()

    with pytest.raises(ModelError, match="unknown virtual: nope"):
        person.get_virtual("nope")


def test_operations_initialize_the_table_once(fake: FakeDynamoDBClient) -> None:
    fake.expect("describe_table", {"TableName": "Cat"}, response=active_table("Cat"))
    fake.expect("describe_table", response=active_table("Cat"))
    fake.expect("put_item", {"TableName": "Cat", "Item": ANY})
    fake.expect("put_item")

    Cat = compile_model("Cat", CAT_SHAPE, {"sleep": no_sleep}, lambda: fake)
    Cat(id="c1").put()
    Cat(id="c2").put()

    assert Cat.table.initialized
    fake.assert_no_pending()
