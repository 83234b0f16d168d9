from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from .errors import ModelError

logger = logging.getLogger(__name__)


class VirtualType:
    """A computed, never-stored document property registered on a schema.

    ``get`` registers ``fn(document)`` and ``set`` registers
    ``fn(document, value)``; documents reach them through
    ``get_virtual``/``set_virtual``.
    """

    def __init__(self, path: str, options: Mapping[str, Any] | None = None) -> None:
        self.path = path
        self.options = dict(options or {})
        self.getter: Callable[[Any], Any] | None = None
        self.setter: Callable[[Any, Any], None] | None = None

    def __repr__(self) -> str:
        return f"VirtualType({self.path!r})"

    def get(self, fn: Callable[[Any], Any]) -> VirtualType:
        logger.debug("registering getter for %s", self.path)
        self.getter = fn
        return self

    def set(self, fn: Callable[[Any, Any], None]) -> VirtualType:
        logger.debug("registering setter for %s", self.path)
        self.setter = fn
        return self

    def apply_get(self, document: Any) -> Any:
        if self.getter is None:
            raise ModelError(f"virtual has no getter: {self.path}")
        return self.getter(document)

    def apply_set(self, document: Any, value: Any) -> None:
        if self.setter is None:
            raise ModelError(f"virtual has no setter: {self.path}")
        self.setter(document, value)
