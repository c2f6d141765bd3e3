"""
File-backed JSON state store

Holds a single JSON document on disk (tracker metrics, usage logs,
validation results). Loads report failures explicitly through LoadResult
instead of raising, and every read-modify-write cycle runs under a
per-store lock so concurrent writers cannot clobber each other.
"""

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from .observability.metrics import get_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class LoadResult:
    """Outcome of loading a store document"""

    data: dict[str, Any]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class JsonStateStore:
    """
    Single JSON document with serialized updates

    A missing file loads as the default document without error. An
    unreadable or corrupt file also loads as the default, with the error
    recorded on the LoadResult; the next successful save replaces it.
    When a schema is given, a well-formed JSON object that does not
    validate against it counts as corrupt too.
    """

    def __init__(
        self,
        path: Path,
        default_factory: Callable[[], dict[str, Any]],
        schema: Optional[type[BaseModel]] = None,
    ):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.default_factory = default_factory
        self.schema = schema
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.path.stem

    def load(self) -> LoadResult:
        """Load the document, falling back to the default on any read error"""
        if not self.path.exists():
            return LoadResult(data=self.default_factory())

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            return LoadResult(data=self.default_factory(), error=str(e))

        if not isinstance(data, dict):
            return LoadResult(
                data=self.default_factory(),
                error=f"expected a JSON object, found {type(data).__name__}",
            )

        if self.schema is not None:
            try:
                self.schema.model_validate(data)
            except ValidationError as e:
                return LoadResult(
                    data=self.default_factory(),
                    error=f"invalid {self.schema.__name__}: {e.error_count()} errors",
                )
        return LoadResult(data=data)

    def load_or_default(self) -> dict[str, Any]:
        """Load the document and log (not raise) when the default was used"""
        result = self.load()
        if not result.ok:
            logger.error(
                f"Failed to load {self.path}, using empty default: {result.error}"
            )
        return result.data

    def save(self, data: dict[str, Any]) -> None:
        """Write the whole document atomically (temp file + rename)"""
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def read(self) -> dict[str, Any]:
        return await asyncio.to_thread(self.load_or_default)

    async def update(self, mutator: Callable[[dict[str, Any]], T]) -> T:
        """
        Apply mutator to the current document and persist it

        The load, mutation and save happen under the store lock; file I/O
        runs in a worker thread so the event loop stays free. A failed
        save is logged and the mutator's return value is still returned.
        """
        async with self._lock:
            data = await asyncio.to_thread(self.load_or_default)
            result = mutator(data)
            try:
                await asyncio.to_thread(self.save, data)
            except OSError as e:
                logger.error(f"Failed to save {self.path}: {e}")
                metrics = get_metrics()
                if metrics:
                    metrics.record_store_write(self.name, "error")
            else:
                metrics = get_metrics()
                if metrics:
                    metrics.record_store_write(self.name, "ok")
            return result
