"""
Task-completion polling.

Every write accepted by the search service returns a ``taskID``; the write
is only visible to searches once the task is *published*. :class:`TaskWaiter`
polls the task-status endpoint at a fixed interval until that happens, and
:class:`WaitableWrapper` pairs a write response with the tasks it produced so
callers can block on them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any, Union

from hsearch.executors import HttpExecutor
from hsearch.models import CallType, SearchResponseError, SearchTimeoutError, index_path
from hsearch.operation import CancellationToken, Completion, Operation

if TYPE_CHECKING:
    from hsearch.client import SearchClient

logger = logging.getLogger(__name__)

TaskID = Union[int, str]


def extract_task_id(content: dict[str, Any]) -> TaskID | None:
    """Return ``content["taskID"]`` if it is a usable id, else ``None``."""
    task_id = content.get("taskID")
    if isinstance(task_id, bool) or not isinstance(task_id, (int, str)):
        return None
    if isinstance(task_id, str) and not task_id:
        return None
    return task_id


class TaskWaiter:
    """Poll one task until the service reports it ``published``.

    The status endpoint is polled on the write host pool. Any response whose
    status is not ``published`` schedules another poll after ``interval``
    seconds. Errors from the executor end the wait immediately; they are not
    retried here.

    Args:
        executor: Transport used for the status polls.
        index_name: Index the task belongs to.
        task_id: Id returned by the write call.
        interval: Fixed delay between polls.
        deadline: Optional ``time.monotonic()`` value after which the wait
            fails with :class:`SearchTimeoutError`. ``None`` polls forever.
    """

    def __init__(
        self,
        executor: HttpExecutor,
        index_name: str,
        task_id: TaskID,
        *,
        interval: float = 0.1,
        deadline: float | None = None,
    ) -> None:
        self._executor = executor
        self._index_name = index_name
        self._task_id = task_id
        self._interval = interval
        self._deadline = deadline
        self._path = f"{index_path(index_name)}/task/{task_id}"
        self.polls = 0

    def _remaining(self) -> float | None:
        if self._deadline is None:
            return None
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise SearchTimeoutError(
                f"Task {self._task_id} on index {self._index_name!r} was not published "
                f"before the timeout ({self.polls} poll(s))"
            )
        return remaining

    async def run(self, token: CancellationToken) -> dict[str, Any]:
        """Poll until published and return the final status response."""
        while True:
            token.raise_if_cancelled()
            self._remaining()

            content = await self._executor.execute(self._path, "GET", call_type=CallType.WRITE)
            self.polls += 1
            token.raise_if_cancelled()

            status = content.get("status")
            if status == "published":
                logger.info(
                    "Task %s on index %r published after %d poll(s)",
                    self._task_id,
                    self._index_name,
                    self.polls,
                )
                return content
            logger.debug(
                "Task %s on index %r status=%r, polling again in %.2fs",
                self._task_id,
                self._index_name,
                status,
                self._interval,
            )

            remaining = self._remaining()
            delay = self._interval if remaining is None else min(self._interval, remaining)
            await asyncio.sleep(delay)


class WaitableWrapper:
    """A write response plus the tasks it produced.

    Item access reads from the wrapped response, so existing code treating
    the result as a plain dict keeps working::

        wrapper = index.add_object({"name": "phone"}).result()
        wrapper["objectID"]
        wrapper.wait(timeout=10)
    """

    def __init__(
        self,
        response: dict[str, Any],
        tasks: Sequence[tuple[str, TaskID]],
        client: SearchClient,
    ) -> None:
        self._response = response
        self._tasks = list(tasks)
        self._client = client

    @classmethod
    def for_index(
        cls, response: dict[str, Any], index_name: str, client: SearchClient
    ) -> WaitableWrapper:
        task_id = extract_task_id(response)
        tasks = [(index_name, task_id)] if task_id is not None else []
        return cls(response, tasks, client)

    @property
    def response(self) -> dict[str, Any]:
        return self._response

    @property
    def tasks(self) -> list[tuple[str, TaskID]]:
        return list(self._tasks)

    @property
    def task_ids(self) -> list[TaskID]:
        return [task_id for _, task_id in self._tasks]

    @property
    def task_id(self) -> TaskID | None:
        return self._tasks[0][1] if self._tasks else None

    def __getitem__(self, key: str) -> Any:
        return self._response[key]

    def __contains__(self, key: object) -> bool:
        return key in self._response

    def __iter__(self) -> Iterator[str]:
        return iter(self._response)

    def get(self, key: str, default: Any = None) -> Any:
        return self._response.get(key, default)

    async def _wait(self, token: CancellationToken, timeout: float | None) -> None:
        if not self._tasks:
            raise SearchResponseError(
                "No task ID returned",
                raw_body=json.dumps(self._response, default=str),
            )
        deadline = None if timeout is None else time.monotonic() + timeout
        for index_name, task_id in self._tasks:
            waiter = TaskWaiter(
                self._client.executor,
                index_name,
                task_id,
                interval=self._client.config.task_poll_interval,
                deadline=deadline,
            )
            await waiter.run(token)

    def wait_async(
        self,
        timeout: float | None = None,
        completion: Completion | None = None,
    ) -> Operation[None]:
        """Wait for every task without blocking. Resolves to ``None``."""
        return self._client._launch(
            lambda token: self._wait(token, timeout),
            completion,
            name="wait_tasks",
        )

    def wait(self, timeout: float | None = None) -> None:
        """Block until every task is published.

        Raises:
            SearchTimeoutError: *timeout* seconds elapsed first.
            SearchResponseError: The response carried no task id.
            SearchError: A status poll failed.
        """
        self.wait_async(timeout).result()

    def __repr__(self) -> str:
        return f"WaitableWrapper(tasks={self._tasks!r})"
