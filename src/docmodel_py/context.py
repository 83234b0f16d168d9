from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

import boto3
from botocore.config import Config

from .errors import ModelError
from .model import MODEL_DEFAULTS, Model, compile_model
from .schema import Schema

logger = logging.getLogger(__name__)

LOCAL_ENDPOINT = "http://localhost:8000"


def create_client_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


class Docmodel:
    """Owns the DynamoDB client, the model registry and model defaults.

    The client is built on first use. Registering a model name twice
    returns the class from the first registration.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        config: Config | None = None,
        defaults: Mapping[str, Any] | None = None,
    ) -> None:
        self._client = client
        self.endpoint_url = endpoint_url
        self.region_name = region_name
        self.config = config
        self.defaults: dict[str, Any] = {**MODEL_DEFAULTS, **(defaults or {})}
        self.models: dict[str, type[Model]] = {}
        self._lock = threading.Lock()

    def local(self, url: str = LOCAL_ENDPOINT) -> Docmodel:
        with self._lock:
            logger.debug("using local endpoint %s", url)
            self.endpoint_url = url
            self._client = None
        return self

    def ddb(self) -> Any:
        with self._lock:
            if self._client is None:
                kwargs: dict[str, Any] = {}
                if self.endpoint_url is not None:
                    kwargs["endpoint_url"] = self.endpoint_url
                if self.region_name is not None:
                    kwargs["region_name"] = self.region_name
                if self.config is not None:
                    kwargs["config"] = self.config
                logger.debug("creating dynamodb client %r", kwargs)
                self._client = boto3.client("dynamodb", **kwargs)
            return self._client

    def set_defaults(self, **options: Any) -> Docmodel:
        self.defaults.update(options)
        return self

    def model(
        self,
        name: str,
        schema: Schema | Mapping[str, Any] | None = None,
        **options: Any,
    ) -> type[Model]:
        merged = {**self.defaults, **options}
        table_name = f"{merged.get('prefix', '')}{name}"

        with self._lock:
            existing = self.models.get(table_name)
        if existing is not None:
            return existing
        if schema is None:
            raise ModelError(f"model not registered: {table_name}")

        model_cls = compile_model(name, schema, merged, self.ddb)
        with self._lock:
            return self.models.setdefault(table_name, model_cls)
