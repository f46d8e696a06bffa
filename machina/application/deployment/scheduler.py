"""Job schedulers for deployment jobs."""
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Tuple


class JobScheduler(ABC):
    """Runs deployment jobs."""

    @abstractmethod
    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """Schedule ``fn(*args)``."""

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs."""


class ThreadPoolJobScheduler(JobScheduler):
    """Runs jobs on a fixed-size thread pool."""

    def __init__(self, max_workers: int = 4):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="deployment")

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        self._pool.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


class ManualJobScheduler(JobScheduler):
    """Holds jobs until :meth:`run_pending` is called. Used in tests and one-shot CLI runs."""

    def __init__(self):
        self._pending: List[Tuple[Callable[..., Any], Tuple[Any, ...]]] = []

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        self._pending.append((fn, args))

    def run_pending(self) -> int:
        """Run queued jobs in submission order, including jobs they enqueue. Returns the count run."""
        count = 0
        while self._pending:
            fn, args = self._pending.pop(0)
            fn(*args)
            count += 1
        return count
