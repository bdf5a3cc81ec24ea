"""
Asynchronous formation queue.

Conversation turns submit candidate memories here instead of calling the
pipeline directly. submit() never blocks: when the bounded buffer is full the
task is rejected with a failed status and a failed FormationEvent. A single
worker thread drains tasks in submission order, so only one formation
decision is in flight at any time.
"""
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
from mnemos.config import settings
from mnemos.memory.formation import (
    FormationEvent,
    FormationEventType,
    FormationListener,
    FormationPipeline,
    FormationTask,
)
from mnemos.logging import logger, correlation_id_ctx

POLL_INTERVAL = 0.05


class AsyncStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StatusUpdate:
    task_id: str
    status: AsyncStatus
    message: str


StatusSink = Callable[[StatusUpdate], None]

_COMPLETED_MESSAGES = {
    FormationEventType.CREATED: "Memory stored",
    FormationEventType.SKIPPED: "Already remembered",
    FormationEventType.SUPERSEDED: "Memory updated",
}


class FormationQueue:
    def __init__(
        self,
        pipeline: FormationPipeline,
        buffer_size: Optional[int] = None,
        on_status: Optional[StatusSink] = None,
    ):
        self.pipeline = pipeline
        self.buffer_size = buffer_size or settings.QUEUE_BUFFER_SIZE
        self._tasks: "queue.Queue[FormationTask]" = queue.Queue(maxsize=self.buffer_size)
        self._on_status = on_status
        self._worker: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        # Held by submit() across the stopping check and the put; stop() takes it to set _stopping
        self._submit_lock = threading.Lock()
        self._deadline: Optional[float] = None
        # queued + running tasks, guarded by _idle
        self._outstanding = 0
        self._idle = threading.Condition()

    def on_formation(self, listener: FormationListener):
        self.pipeline.on_formation(listener)

    def pending(self) -> int:
        """Approximate number of buffered tasks."""
        return self._tasks.qsize()

    # ------------------------------------------------------------------
    # producer side
    # ------------------------------------------------------------------
    def submit(self, task: FormationTask) -> str:
        """Queue a candidate memory and return its task id immediately."""
        self._report(task.id, AsyncStatus.PENDING, "Memory queued")
        with self._submit_lock:
            stopped = self._stopping.is_set()
            if not stopped:
                with self._idle:
                    self._outstanding += 1
                try:
                    self._tasks.put_nowait(task)
                    return task.id
                except queue.Full:
                    pass

        if stopped:
            self._reject(task, "Memory queue stopped")
            return task.id
        logger.warning(f"Formation queue full ({self.buffer_size}), dropping task {task.id}")
        self._reject(task, "Memory queue full")
        self._finish_one()
        return task.id

    def _reject(self, task: FormationTask, message: str):
        self._report(task.id, AsyncStatus.FAILED, message)
        self.pipeline.notify(FormationEvent(
            kind=FormationEventType.FAILED,
            reason=message,
            task_id=task.id,
            content=task.content,
        ))

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start(self):
        if self._stopping.is_set():
            raise RuntimeError("formation queue has been stopped")
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, name="memory-formation", daemon=True)
        self._worker.start()
        logger.debug("Formation queue started")

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting work and drain the buffer until it is empty or the
        timeout elapses. Tasks still queued at the deadline are abandoned.
        Returns True when the worker exited in time.
        """
        timeout = settings.QUEUE_STOP_TIMEOUT if timeout is None else timeout
        with self._submit_lock:
            self._deadline = time.monotonic() + timeout
            self._stopping.set()

        if self._worker is None:
            self._abandon_remaining()
            return True

        self._worker.join(timeout)
        stopped = not self._worker.is_alive()
        if not stopped:
            logger.warning(f"Formation queue did not drain within {timeout:.1f}s; {self.pending()} tasks abandoned")
        return stopped

    def wait_for_formations(self, timeout: float) -> bool:
        """Block until every queued formation finished, without stopping the queue."""
        deadline = time.monotonic() + timeout
        with self._idle:
            while self._outstanding:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    # ------------------------------------------------------------------
    # consumer side
    # ------------------------------------------------------------------
    def _past_deadline(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _run(self):
        while True:
            if self._stopping.is_set() and (self._tasks.empty() or self._past_deadline()):
                break
            try:
                task = self._tasks.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            if self._past_deadline():
                self._abandon(task)
                break
            self._process(task)
        self._abandon_remaining()
        logger.debug("Formation queue worker exited")

    def _process(self, task: FormationTask):
        token = correlation_id_ctx.set(task.id)
        try:
            self._report(task.id, AsyncStatus.IN_PROGRESS, "Forming memory...")
            event = self.pipeline.form(task)
            if event.kind == FormationEventType.FAILED:
                self._report(task.id, AsyncStatus.FAILED, f"Failed: {event.reason}")
            else:
                self._report(task.id, AsyncStatus.COMPLETED, _COMPLETED_MESSAGES[event.kind])
        except Exception as e:
            # The worker has to outlive any single task
            logger.exception(f"Unexpected error processing formation task {task.id}")
            self._report(task.id, AsyncStatus.FAILED, f"Failed: {e}")
        finally:
            correlation_id_ctx.reset(token)
            self._tasks.task_done()
            self._finish_one()

    def _abandon(self, task: FormationTask):
        self._reject(task, "Abandoned at shutdown")
        self._tasks.task_done()
        self._finish_one()

    def _abandon_remaining(self):
        while True:
            try:
                task = self._tasks.get_nowait()
            except queue.Empty:
                return
            self._abandon(task)

    def _finish_one(self):
        with self._idle:
            self._outstanding -= 1
            if self._outstanding <= 0:
                self._idle.notify_all()

    def _report(self, task_id: str, status: AsyncStatus, message: str):
        if self._on_status is None:
            return
        try:
            self._on_status(StatusUpdate(task_id=task_id, status=status, message=message))
        except Exception:
            logger.exception(f"Status sink failed for task {task_id}")
