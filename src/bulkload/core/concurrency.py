# concurrency.py
# SPDX-License-Identifier: MIT
"""Bounded thread-pool execution for the loader.

Wraps :class:`concurrent.futures.ThreadPoolExecutor` with a bounded
submission window so a streaming producer never queues more than
``window`` records ahead of the workers.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import TypeVar

from .config import LoadConfig
from .log import get_logger

__all__ = ["ExecutorConfig", "Executor", "resolve_load_executor_config"]

log = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ExecutorConfig:
    """Immutable executor settings used to construct worker pools.

    Attributes:
        max_workers (int): Number of worker threads.
        window (int): Maximum number of in-flight tasks allowed before
            the producer blocks.
        thread_name_prefix (str): Prefix for worker thread names.
    """
    max_workers: int
    window: int
    thread_name_prefix: str = "bulkload-worker"


class Executor:
    """Run tasks in a thread pool with bounded submission.

    At most ``cfg.window`` tasks are in flight; results reach callbacks
    in completion order, not submission order.

    Attributes:
        cfg (ExecutorConfig): Executor configuration for this instance.
    """

    def __init__(self, cfg: ExecutorConfig) -> None:
        self.cfg = cfg

    def _make_executor(self) -> ThreadPoolExecutor:
        if self.cfg.max_workers < 1:
            raise ValueError("Executor requires max_workers >= 1")
        return ThreadPoolExecutor(
            max_workers=self.cfg.max_workers,
            thread_name_prefix=self.cfg.thread_name_prefix,
        )

    def map_unordered(
        self,
        items: Iterable[T],
        fn: Callable[[T], R],
        on_result: Callable[[R], None],
        *,
        fail_fast: bool = False,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        """Submit items to workers and consume results as they complete.

        ``items`` is pulled lazily from the calling thread, only when the
        window has room, so a generator can decide to stop producing.

        Args:
            items (Iterable[T]): Items to process.
            fn (Callable[[T], R]): Worker function invoked for each item.
            on_result (Callable[[R], None]): Callback invoked, on the
                calling thread, for each successful result.
            fail_fast (bool): Whether to cancel queued tasks and re-raise
                the first worker error.
            on_error (Callable[[BaseException], None] | None): Optional
                callback invoked when a worker raises, before any re-raise.

        Raises:
            Exception: The first worker error when ``fail_fast`` is True.
        """
        window = max(self.cfg.window, self.cfg.max_workers)
        with self._make_executor() as pool:
            pending: list[Future[R]] = []

            def _drain(block: bool = False) -> None:
                nonlocal pending
                if not pending:
                    return
                done, still = wait(
                    pending,
                    timeout=None if block else 0.0,
                    return_when=FIRST_COMPLETED,
                )
                pending = list(still)
                for fut in done:
                    try:
                        result = fut.result()
                    except Exception as exc:  # noqa: BLE001
                        if on_error:
                            on_error(exc)
                        if fail_fast:
                            for other in pending:
                                other.cancel()
                            raise
                        log.debug("Worker task failed: %s", exc)
                        continue
                    on_result(result)

            for item in items:
                pending.append(pool.submit(fn, item))
                if len(pending) >= window:
                    _drain(block=True)
                else:
                    _drain(block=False)

            while pending:
                _drain(block=True)


def resolve_load_executor_config(cfg: LoadConfig) -> ExecutorConfig:
    """Derive thread-pool settings from a :class:`LoadConfig`.

    The window defaults to four records per worker so workers rarely wait
    on the producer.
    """
    workers = max(1, int(cfg.concurrency))
    window = cfg.submit_window if cfg.submit_window is not None else workers * 4
    return ExecutorConfig(max_workers=workers, window=max(window, workers))
