"""
Delete every object matching a query.

Deleting objects invalidates any browse cursor obtained before the delete,
so the coordinator never follows a cursor: after each batch of deletions is
published it browses again from the start, until a page reports no more
results.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import TYPE_CHECKING, Any

from hsearch.models import OperationCancelled, SearchResponseError
from hsearch.operation import CancellationToken
from hsearch.query import Query
from hsearch.tasks import TaskWaiter, extract_task_id

if TYPE_CHECKING:
    from hsearch.index import Index

logger = logging.getLogger(__name__)


class DeleteByQueryState(enum.Enum):
    BROWSING = "browsing"
    DELETING = "deleting"
    WAITING = "waiting"
    DONE = "done"
    FAILED = "failed"


def _object_ids(hits: list[Any]) -> list[str]:
    return [
        hit["objectID"]
        for hit in hits
        if isinstance(hit, dict) and isinstance(hit.get("objectID"), str)
    ]


class DeleteByQueryCoordinator:
    """Browse, delete, wait, and repeat until the query matches nothing more.

    The query is copied at construction, so later changes to the caller's
    object do not affect a running workflow. Steps run strictly one after the
    other, and the cancellation token is checked before and after each one.
    """

    def __init__(self, index: Index, query: Query) -> None:
        self._index = index
        self._query = query.copy()
        self._state = DeleteByQueryState.BROWSING
        self.rounds = 0
        self.deleted = 0

    @property
    def state(self) -> DeleteByQueryState:
        return self._state

    @property
    def query(self) -> Query:
        return self._query

    def _transition(self, state: DeleteByQueryState) -> None:
        logger.debug(
            "delete_by_query on %r: %s -> %s",
            self._index.name,
            self._state.value,
            state.value,
        )
        self._state = state

    async def run(self, token: CancellationToken) -> None:
        try:
            await self._run(token)
        except OperationCancelled:
            raise
        except Exception:
            self._transition(DeleteByQueryState.FAILED)
            raise

    async def _run(self, token: CancellationToken) -> None:
        while True:
            token.raise_if_cancelled()
            self._transition(DeleteByQueryState.BROWSING)
            page = await self._index._browse(self._query)
            token.raise_if_cancelled()

            hits = page.get("hits")
            if not isinstance(hits, list):
                raise SearchResponseError(
                    "No hits returned when browsing",
                    raw_body=json.dumps(page, default=str),
                )
            has_more = page.get("cursor") is not None
            object_ids = _object_ids(hits)
            if not object_ids:
                break

            self._transition(DeleteByQueryState.DELETING)
            response = await self._index._delete_object_ids(object_ids)
            token.raise_if_cancelled()
            task_id = extract_task_id(response)
            if task_id is None:
                raise SearchResponseError(
                    "No task ID returned when deleting",
                    raw_body=json.dumps(response, default=str),
                )

            self._transition(DeleteByQueryState.WAITING)
            waiter = TaskWaiter(
                self._index.client.executor,
                self._index.name,
                task_id,
                interval=self._index.client.config.task_poll_interval,
            )
            await waiter.run(token)
            self.rounds += 1
            self.deleted += len(object_ids)

            if not has_more:
                break

        self._transition(DeleteByQueryState.DONE)
        logger.info(
            "delete_by_query on %r finished: deleted=%d rounds=%d",
            self._index.name,
            self.deleted,
            self.rounds,
        )
