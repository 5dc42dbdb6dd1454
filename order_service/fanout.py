import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Executor, wait
from typing import Any, Callable, List, Sequence

logger = logging.getLogger(__name__)


class WriteCancelled(Exception):
    """A sibling write failed before this one was issued."""


def _guarded(call: Callable[[], Any], cancelled: threading.Event) -> Any:
    if cancelled.is_set():
        raise WriteCancelled()
    try:
        return call()
    except Exception:
        cancelled.set()
        raise


def fan_out(executor: Executor, calls: Sequence[Callable[[], Any]]) -> List[Any]:
    """
    Run independent calls concurrently and wait for all of them.

    Results come back in call order. The first failure sets the phase's
    cancellation token: calls that have not started yet are cancelled or
    refuse to run, then the failure is raised. Calls already in flight run
    to completion and their results are dropped.
    """
    if not calls:
        return []

    cancelled = threading.Event()
    futures = [executor.submit(_guarded, call, cancelled) for call in calls]
    done, pending = wait(futures, return_when=FIRST_EXCEPTION)

    errors = [f.exception() for f in futures if f in done and not f.cancelled() and f.exception() is not None]
    if errors:
        cancelled.set()
        for future in pending:
            future.cancel()
        logger.debug("Phase aborted: %d failed, %d not awaited", len(errors), len(pending))
        raise next((e for e in errors if not isinstance(e, WriteCancelled)), errors[0])

    return [f.result() for f in futures]
