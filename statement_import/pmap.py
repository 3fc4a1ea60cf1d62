"""Ordered, bounded-concurrency map over a thread pool.

Used for per-page rendering and text recognition: pages are independent, but
the caller needs every result, in page order, before deciding anything about
the document as a whole.

- ``concurrency`` caps how many mapper calls run at once; at most that many
  items are pulled from the iterable ahead of completion.
- ``stop_on_error=True`` (default) re-raises the first failure and cancels
  work that has not started. With ``False`` every item runs and failures are
  raised together as an ``ExceptionGroup``.
- ``on_done(completed, submitted)`` is invoked from the calling thread after
  each completion, which is where progress reporting hooks in.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    on_done: Callable[[int, int], None] | None = None,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` and return results in input order."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items: Iterator[tuple[int, InT]] = enumerate(iterable)
    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    pending: dict[Future[OutT], int] = {}
    submitted = 0
    completed = 0

    with ThreadPoolExecutor(max_workers=concurrency) as pool:

        def _top_up() -> None:
            nonlocal submitted
            while len(pending) < concurrency:
                nxt = next(items, None)
                if nxt is None:
                    return
                idx, item = nxt
                pending[pool.submit(mapper, item)] = idx
                submitted += 1

        _top_up()
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as exc:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(exc)
                completed += 1
                if on_done is not None:
                    on_done(completed, submitted)
            _top_up()

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in range(submitted)]


__all__ = ["p_map"]
