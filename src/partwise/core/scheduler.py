"""Bounded-concurrency execution of per-part tasks."""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from .exceptions import SchedulerStateError

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class TransferTask:
    """One part's unit of work; ``work`` returns the finished part record."""

    part_number: int
    work: Callable[[], Any]

    def do(self) -> Any:
        return self.work()


@dataclass
class SchedulerOutcome:
    """What the workers produced once the scheduler stopped."""

    results: List[Any] = field(default_factory=list)
    error: Optional[BaseException] = None
    failed_task: Optional[TransferTask] = None
    skipped: List[TransferTask] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


_STOP = object()


class TaskScheduler:
    """Run tasks on ``task_num`` worker threads.

    Usage::

        scheduler = TaskScheduler(4)
        scheduler.run()
        for task in tasks:
            scheduler.add_task(task)
        outcome = scheduler.finish_add()

    After the first task error no further queued task is started, but tasks
    already running finish before :meth:`finish_add` returns. The same holds
    when ``cancelled`` is set.
    """

    def __init__(
        self,
        task_num: int,
        cancelled: Optional[threading.Event] = None,
        on_result: Optional[Callable[[TransferTask, Any], None]] = None,
        on_error: Optional[Callable[[TransferTask, BaseException], None]] = None,
    ) -> None:
        if task_num < 1:
            raise ValueError("task_num must be at least 1")
        self.task_num = task_num
        self.cancelled = cancelled
        self.on_result = on_result
        self.on_error = on_error

        self._state = SchedulerState.CREATED
        self._state_lock = threading.Lock()
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._workers = []
        self._outcome = SchedulerOutcome()
        self._outcome_lock = threading.Lock()
        self._halted = threading.Event()

    @property
    def state(self) -> SchedulerState:
        return self._state

    def run(self) -> None:
        with self._state_lock:
            if self._state is not SchedulerState.CREATED:
                raise SchedulerStateError("run", self._state.value)
            self._state = SchedulerState.RUNNING
        self._executor = ThreadPoolExecutor(
            max_workers=self.task_num, thread_name_prefix="partwise-worker"
        )
        self._workers = [self._executor.submit(self._worker) for _ in range(self.task_num)]
        logger.debug(f"Scheduler started {self.task_num} workers")

    def add_task(self, task: TransferTask) -> None:
        with self._state_lock:
            if self._state is not SchedulerState.RUNNING:
                raise SchedulerStateError("add a task", self._state.value)
            self._queue.put(task)

    def finish_add(self) -> SchedulerOutcome:
        """Stop accepting tasks, wait for the workers and return the outcome."""
        with self._state_lock:
            if self._state is not SchedulerState.RUNNING:
                raise SchedulerStateError("finish adding tasks", self._state.value)
            self._state = SchedulerState.DRAINING
            for _ in range(self.task_num):
                self._queue.put(_STOP)

        wait(self._workers)
        self._executor.shutdown(wait=True)
        with self._state_lock:
            self._state = SchedulerState.STOPPED
        logger.debug(
            f"Scheduler stopped: {len(self._outcome.results)} done, "
            f"{len(self._outcome.skipped)} skipped, error={self._outcome.error!r}"
        )
        return self._outcome

    def _should_dispatch(self) -> bool:
        if self._halted.is_set():
            return False
        return self.cancelled is None or not self.cancelled.is_set()

    def _worker(self) -> None:
        while True:
            task = self._queue.get()
            if task is _STOP:
                return
            if not self._should_dispatch():
                with self._outcome_lock:
                    self._outcome.skipped.append(task)
                continue

            try:
                result = task.do()
                if self.on_result is not None:
                    self.on_result(task, result)
            except Exception as e:
                self._fail(task, e)
                continue

            with self._outcome_lock:
                self._outcome.results.append(result)

    def _fail(self, task: TransferTask, error: BaseException) -> None:
        with self._outcome_lock:
            first = self._outcome.error is None
            if first:
                self._outcome.error = error
                self._outcome.failed_task = task
        self._halted.set()
        if first:
            logger.error(f"Part {task.part_number}: failed, stopping dispatch: {error}")
        else:
            logger.warning(f"Part {task.part_number}: failed after stop: {error}")
        if self.on_error is not None:
            try:
                self.on_error(task, error)
            except Exception as e:
                logger.warning(f"Error callback failed for part {task.part_number}: {e}")
