from __future__ import annotations

import os
import uuid

from docmodel_py import Docmodel, create_client_config


def main() -> None:
    dm = Docmodel(
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        config=create_client_config(),
        defaults={"prefix": f"docmodel_py_example_{uuid.uuid4().hex[:12]}_"},
    ).local(os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"))

    Note = dm.model(
        "Note",
        {
            "pk": {"type": str, "hash_key": True},
            "sk": {"type": str, "range_key": True},
            "value": {"type": int, "default": 0},
        },
        timestamps=True,
    )

    try:
        Note.create({"pk": "A", "sk": "001", "value": 1})
        Note.create({"pk": "A", "sk": "010", "value": 10})
        Note.create({"pk": "A", "sk": "100", "value": 100})

        print("get:", Note.get({"pk": "A", "sk": "010"}))
        print("update:", Note.update({"pk": "A", "sk": "010"}, {"$ADD": {"value": 5}}))

        page = Note.query("pk").eq("A").where("sk").begins_with("0").exec()
        print("query begins_with('0'):", list(page))
    finally:
        Note.table.delete()


if __name__ == "__main__":
    main()
