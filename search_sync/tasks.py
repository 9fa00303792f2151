"""
Task waiter: polls asynchronous index tasks to a terminal state.

Each task moves through ``pending → succeeded | failed``. Every round
polls all still-pending tasks at once, then sleeps according to the
backoff policy. A failed task aborts immediately; tasks still pending
after ``max_retries`` rounds raise ``TaskWaitTimeoutError``.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from search_sync import config
from search_sync.errors import TaskWaitTimeoutError, TerminalTaskFailureError

log = logging.getLogger("search-sync.tasks")

PENDING = "pending"
SUCCEEDED = "succeeded"
FAILED = "failed"


class FixedBackoff:
    def __init__(self, interval: float):
        self.interval = interval

    def delay(self, attempt: int) -> float:
        return self.interval

    def __repr__(self):
        return f"FixedBackoff({self.interval})"


class ExponentialBackoff:
    def __init__(self, base: float, factor: float = 2.0, max_delay: float = 30.0):
        self.base = base
        self.factor = factor
        self.max_delay = max_delay

    def delay(self, attempt: int) -> float:
        return min(self.base * (self.factor ** attempt), self.max_delay)

    def __repr__(self):
        return f"ExponentialBackoff({self.base}, {self.factor}, {self.max_delay})"


def default_backoff():
    if config.TASK_BACKOFF == "fixed":
        return FixedBackoff(config.TASK_BACKOFF_BASE)
    return ExponentialBackoff(config.TASK_BACKOFF_BASE, 2.0, config.TASK_BACKOFF_MAX)


class TaskWaiter:
    def __init__(self, client, max_retries: int = None, backoff=None,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.max_retries = config.TASK_MAX_RETRIES if max_retries is None else max_retries
        self.backoff = backoff or default_backoff()
        self.sleep = sleep

    def wait(self, task_uids: Sequence[int], max_retries: Optional[int] = None,
             backoff=None, batch_ids: Optional[Dict[int, List[Any]]] = None) -> None:
        """
        Block until every task succeeded.

        ``batch_ids`` maps task uid → document ids of its batch and is only
        used to describe failures.
        """
        if not task_uids:
            return

        max_retries = self.max_retries if max_retries is None else max_retries
        backoff = backoff or self.backoff
        states = {uid: PENDING for uid in task_uids}
        attempt = 0

        while True:
            pending = [uid for uid, state in states.items() if state == PENDING]
            failures = []
            for task in self.client.get_tasks(pending):
                if task.task_uid not in states:
                    continue
                if task.is_succeeded:
                    states[task.task_uid] = SUCCEEDED
                elif task.is_failed:
                    states[task.task_uid] = FAILED
                    failures.append(task)

            if failures:
                failed_uids = [t.task_uid for t in failures]
                raise TerminalTaskFailureError(
                    f"{len(failures)} index task(s) failed: "
                    + "; ".join(f"#{t.task_uid} {(t.error or {}).get('message', t.status)}"
                                for t in failures),
                    task_uids=failed_uids,
                    errors=[t.error or {"status": t.status} for t in failures],
                    batch_ids={uid: (batch_ids or {}).get(uid, []) for uid in failed_uids},
                )

            pending = [uid for uid, state in states.items() if state == PENDING]
            if not pending:
                log.debug("%d task(s) succeeded after %d retries", len(states), attempt)
                return

            if attempt >= max_retries:
                raise TaskWaitTimeoutError(
                    f"{len(pending)} of {len(states)} index task(s) still pending "
                    f"after {max_retries} retries",
                    task_uids=pending,
                )

            delay = backoff.delay(attempt)
            log.debug("%d task(s) pending, retry %d/%d in %.2fs",
                      len(pending), attempt + 1, max_retries, delay)
            self.sleep(delay)
            attempt += 1
