"""
JSON file persistence for the item collection.
"""

import asyncio
import errno
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

from shared.errors import DataReadError, DataWriteError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_async

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


RETRYABLE_ERRNOS = frozenset({
    errno.EBUSY,
    errno.EACCES,
    errno.ENOTEMPTY,
    errno.ETIMEDOUT,
    errno.ECONNRESET,
})


def is_retryable_error(error: Exception) -> bool:
    """Transient filesystem errors worth another attempt."""
    return isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS


class JsonItemStore:
    """Item collection persisted as a JSON array on disk.

    File access runs in a worker thread so the event loop never blocks on
    disk I/O. ``reads`` and ``writes`` count calls to ``load_all`` and
    ``persist_all``.
    """

    def __init__(
        self,
        data_path: Union[str, Path],
        *,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.data_path = Path(data_path)
        self.metrics = metrics
        self.logger = get_logger("catalog.store")
        self.retry_config = RetryConfig(
            max_attempts=max_retries,
            base_delay=retry_delay,
            backoff_strategy="linear",
            jitter=False,
        )
        self.reads = 0
        self.writes = 0

    async def load_all(self) -> List[Dict[str, Any]]:
        """Load every item, in file order."""
        self.reads += 1
        try:
            data = await self._load()
        except DataReadError as e:
            self.logger.error("Error reading items data", path=str(self.data_path), error=e.message)
            self._count("load", "error")
            raise

        self._count("load", "ok")
        return data

    async def persist_all(self, items: List[Dict[str, Any]]) -> None:
        """Replace the stored collection with ``items``."""
        self.writes += 1
        try:
            await retry_async(
                self._write, items,
                exceptions=(OSError,),
                config=self.retry_config,
                should_retry=is_retryable_error,
            )
        except RetryError as e:
            raise self._write_failed(e.last_exception)
        except (OSError, TypeError, ValueError) as e:
            raise self._write_failed(e)

        self._count("persist", "ok")

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self.data_path.is_file)

    async def _load(self) -> List[Dict[str, Any]]:
        if not await asyncio.to_thread(self.data_path.exists):
            raise DataReadError(
                "Failed to read items data: Items data file not found",
                status_code=404,
            )

        try:
            data = await retry_async(
                self._read,
                exceptions=(OSError,),
                config=self.retry_config,
                should_retry=is_retryable_error,
            )
        except FileNotFoundError:
            raise DataReadError(
                "Failed to read items data: Items data file not found",
                status_code=404,
            )
        except RetryError as e:
            raise DataReadError(f"Failed to read items data: {e.last_exception}")
        except OSError as e:
            raise DataReadError(f"Failed to read items data: {e}")
        except ValueError:
            raise DataReadError(f"Failed to read items data: Invalid JSON in file: {self.data_path}")

        if not isinstance(data, list):
            raise DataReadError("Failed to read items data: Invalid data format: expected array")
        return data

    async def _read(self) -> Any:
        return await asyncio.to_thread(self._read_file)

    async def _write(self, items: List[Dict[str, Any]]) -> None:
        await asyncio.to_thread(self._write_file, items)

    def _read_file(self) -> Any:
        with open(self.data_path, "r", encoding="utf-8") as handle:
            return json.load(handle)

    def _write_file(self, items: List[Dict[str, Any]]) -> None:
        directory = self.data_path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".items-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(items, handle, indent=2)
            os.replace(tmp_path, self.data_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _write_failed(self, error: BaseException) -> DataWriteError:
        self.logger.error("Error writing items data", path=str(self.data_path), error=str(error))
        self._count("persist", "error")
        return DataWriteError(f"Failed to write items data: {error}")

    def _count(self, operation: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("store_operations_total", operation=operation, status=status)
