from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class BatchFailure(BaseModel):
    entity_key: str
    error: str


class BatchResult(BaseModel):
    successful: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[BatchFailure] = Field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.successful) + len(self.skipped) + len(self.failed)


def _describe(exc: BaseException) -> str:
    message = str(exc).strip()
    return f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__


def run_bounded(
    entity_keys: Sequence[str],
    worker: Callable[[str], bool],
    max_workers: int,
) -> BatchResult:
    """Run ``worker`` for every key on a bounded thread pool.

    ``worker`` returns True when it changed something and False when there was
    nothing to do. An exception is recorded against its key only; sibling
    work keeps running.
    """
    keys = list(dict.fromkeys(entity_keys))
    if not keys:
        return BatchResult()

    outcomes: dict[str, bool | BaseException] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(keys)))) as pool:
        futures = {pool.submit(worker, key): key for key in keys}
        for future in as_completed(futures):
            key = futures[future]
            try:
                outcomes[key] = bool(future.result())
            except Exception as exc:
                logger.warning("batch_item_failed", extra={"entity_key": key, "error": _describe(exc)})
                outcomes[key] = exc

    result = BatchResult()
    for key in keys:
        outcome = outcomes[key]
        if isinstance(outcome, BaseException):
            result.failed.append(BatchFailure(entity_key=key, error=_describe(outcome)))
        elif outcome:
            result.successful.append(key)
        else:
            result.skipped.append(key)
    return result
