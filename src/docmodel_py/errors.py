from __future__ import annotations


class DocmodelError(Exception):
    pass


class SchemaError(DocmodelError):
    pass


class ValidationError(DocmodelError):
    pass


class ModelError(DocmodelError):
    pass


class QueryError(DocmodelError):
    pass


class ScanError(DocmodelError):
    pass


class TableError(DocmodelError):
    pass


class ConditionFailedError(DocmodelError):
    pass


class NotFoundError(DocmodelError):
    pass


class AwsError(DocmodelError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
