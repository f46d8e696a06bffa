"""Live deployment log fan-out.

Every line is persisted first and then pushed to in-memory subscribers. A new
subscriber receives the backlog and is registered for live lines in one step
under the stream lock, so it never misses or repeats a line. The backlog comes
from the in-memory buffer until the buffer has dropped lines, and from the
repository after that.
"""
import queue
import threading
from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional, Set

from machina.domain.deployment.repository import DeploymentLogRepository
from machina.domain.deployment.value_objects import DeploymentLog, LogLevel, LogSource

_END = object()


class LogSubscription:
    """Iterator over a deployment's log lines: backlog first, then live lines.

    Iteration stops once the stream is closed.
    """

    def __init__(self, stream: Optional["DeploymentLogStream"], backlog: List[DeploymentLog],
                 inbox: "queue.Queue"):
        self._stream = stream
        self._backlog: Deque[DeploymentLog] = deque(backlog)
        self._inbox = inbox
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def poll(self, timeout: Optional[float] = None) -> Optional[DeploymentLog]:
        """
        Next line, or None when nothing arrived within ``timeout`` or the stream ended.

        Check :attr:`finished` to tell the two apart.
        """
        if self._backlog:
            return self._backlog.popleft()
        if self._finished:
            return None
        try:
            item = self._inbox.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _END:
            self._finished = True
            return None
        return item

    def close(self) -> None:
        if self._stream is not None:
            self._stream.unsubscribe(self._inbox)
        self._finished = True
        self._backlog.clear()

    def __iter__(self) -> Iterator[DeploymentLog]:
        return self

    def __next__(self) -> DeploymentLog:
        while True:
            entry = self.poll()
            if entry is not None:
                return entry
            if self._finished:
                raise StopIteration


class DeploymentLogStream:
    """Buffer plus subscriber set for one deployment."""

    def __init__(self,
                 deployment_id: str,
                 repository: DeploymentLogRepository,
                 max_buffer: int = 5000,
                 initial: Iterable[DeploymentLog] = ()):
        self.deployment_id = deployment_id
        self._repository = repository
        self._lock = threading.Lock()
        initial = list(initial)
        self._buffer: Deque[DeploymentLog] = deque(initial, maxlen=max_buffer)
        self._trimmed = len(initial) > max_buffer
        self._subscribers: Set[queue.Queue] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, message: str, level: LogLevel = LogLevel.INFO,
              source: LogSource = LogSource.SYSTEM) -> DeploymentLog:
        """Persist a line and deliver it to every live subscriber."""
        with self._lock:
            entry = self._repository.append(
                DeploymentLog(deployment_id=self.deployment_id, message=message, level=level, source=source)
            )
            if len(self._buffer) == self._buffer.maxlen:
                self._trimmed = True
            self._buffer.append(entry)
            for inbox in self._subscribers:
                inbox.put(entry)
            return entry

    def snapshot(self) -> List[DeploymentLog]:
        with self._lock:
            return list(self._buffer)

    def subscribe(self) -> LogSubscription:
        with self._lock:
            inbox: queue.Queue = queue.Queue()
            if self._closed:
                inbox.put(_END)
            else:
                self._subscribers.add(inbox)
            if self._trimmed:
                backlog = self._repository.find_by_deployment(self.deployment_id)
            else:
                backlog = list(self._buffer)
            return LogSubscription(self, backlog, inbox)

    def unsubscribe(self, inbox: queue.Queue) -> None:
        with self._lock:
            self._subscribers.discard(inbox)

    def close(self) -> None:
        """Deliver the end marker to all subscribers. Later subscribers get the backlog only."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for inbox in self._subscribers:
                inbox.put(_END)
            self._subscribers.clear()


def finished_subscription(entries: List[DeploymentLog]) -> LogSubscription:
    """Subscription over a completed deployment's stored lines."""
    inbox: queue.Queue = queue.Queue()
    inbox.put(_END)
    return LogSubscription(None, entries, inbox)
