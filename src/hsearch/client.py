"""
Search client with a persistent connection pool and cancellable operations.

Provides ``SearchClient`` for use in servers and applications (one
connection pool, one background event loop, index handles that keep their
search cache) and module-level convenience functions ``search()`` /
``asearch()`` for one-shot use.

Usage:
    # One-shot (creates and closes a client per call):
    from hsearch import search
    content = search("products", Query("phone"))

    # Persistent client (recommended):
    from hsearch import SearchClient
    with SearchClient() as client:
        index = client.init_index("products")
        content = index.search(Query("phone")).result()
        content = await index.search(Query("tablet"))
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

import httpx

from hsearch.config import SearchConfig
from hsearch.executors import HttpExecutor
from hsearch.executors.http import HttpxExecutor
from hsearch.index import Index, _with_params
from hsearch.models import CallType, IndexQuery, index_path
from hsearch.operation import CancellationToken, Completion, Operation, OperationRunner
from hsearch.query import Query
from hsearch.tasks import WaitableWrapper, extract_task_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SearchClient:
    """Entry point to the hosted search API.

    Network calls run on a background event loop; completion callbacks run
    on a bounded worker pool. Close the client (or use it as a context
    manager) to release both.

    Args:
        config: Validated configuration. Defaults to ``SearchConfig.from_env()``.
        executor: Transport to use instead of the default
            :class:`~hsearch.executors.http.HttpxExecutor`.
    """

    def __init__(
        self,
        config: SearchConfig | None = None,
        *,
        executor: HttpExecutor | None = None,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or SearchConfig.from_env()
        self._executor: HttpExecutor = executor or HttpxExecutor(
            self._config, _transport=_transport
        )
        self._runner = OperationRunner(self._config.callback_workers)
        self._indexes: dict[str, Index] = {}
        self._lock = threading.Lock()
        self._closed = False

        logger.debug(
            "SearchClient created app_id=%s executor=%s callback_workers=%d",
            self._config.app_id,
            type(self._executor).__name__,
            self._config.callback_workers,
        )

    @property
    def config(self) -> SearchConfig:
        return self._config

    @property
    def executor(self) -> HttpExecutor:
        return self._executor

    @property
    def closed(self) -> bool:
        return self._closed

    def _launch(
        self,
        work: Callable[[CancellationToken], Awaitable[T]],
        completion: Completion | None = None,
        *,
        name: str = "operation",
    ) -> Operation[T]:
        if self._closed:
            raise RuntimeError("SearchClient is closed")
        return Operation(work, self._runner, completion, name=name).start()

    def init_index(self, name: str) -> Index:
        """Return the handle for index *name*; the same object on every call."""
        with self._lock:
            index = self._indexes.get(name)
            if index is None:
                index = Index(name, self)
                self._indexes[name] = index
            return index

    async def _multiple_queries(
        self, queries: Iterable[IndexQuery], strategy: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"requests": [q.to_request() for q in queries]}
        if strategy is not None:
            body["strategy"] = strategy
        return await self._executor.execute(
            "1/indexes/*/queries", "POST", body, CallType.READ, is_search_query=True
        )

    def multiple_queries(
        self,
        queries: Iterable[IndexQuery],
        strategy: str | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[dict[str, Any]]:
        """Run several queries, possibly on different indexes, in one request.

        Results come back in ``content["results"]`` in the order given.
        """
        snapshot = [IndexQuery(q.index_name, q.query.copy()) for q in queries]
        return self._launch(
            lambda token: self._multiple_queries(snapshot, strategy),
            completion,
            name="multiple_queries",
        )

    def list_indexes(
        self, page: int | None = None, *, completion: Completion | None = None
    ) -> Operation[dict[str, Any]]:
        path = _with_params("1/indexes", page=page)
        return self._launch(
            lambda token: self._executor.execute(path, "GET"),
            completion,
            name="list_indexes",
        )

    async def _delete_index(self, name: str) -> WaitableWrapper:
        content = await self._executor.execute(index_path(name), "DELETE", None, CallType.WRITE)
        return WaitableWrapper.for_index(content, name, self)

    def delete_index(
        self, name: str, *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        index_path(name)
        return self._launch(
            lambda token: self._delete_index(name), completion, name="delete_index"
        )

    async def _multiple_batch(self, requests: list[dict[str, Any]]) -> WaitableWrapper:
        content = await self._executor.execute(
            "1/indexes/*/batch", "POST", {"requests": requests}, CallType.WRITE
        )
        task_ids = content.get("taskID")
        tasks = []
        if isinstance(task_ids, dict):
            for index_name, raw in task_ids.items():
                task_id = extract_task_id({"taskID": raw})
                if task_id is not None:
                    tasks.append((index_name, task_id))
        return WaitableWrapper(content, tasks, self)

    def multiple_batch(
        self,
        operations: Iterable[Mapping[str, Any]],
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        """Apply batch actions across indexes. Each action names its ``indexName``."""
        requests = []
        for op in operations:
            if not op.get("indexName"):
                raise ValueError("every batch operation must name an indexName")
            requests.append(copy.deepcopy(dict(op)))
        return self._launch(
            lambda token: self._multiple_batch(requests), completion, name="multiple_batch"
        )

    def close(self) -> None:
        """Cancel outstanding operations and release the connection pool and threads.

        May be called from inside a completion callback.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._runner.run(self._executor.aclose())
        finally:
            self._runner.close()
        logger.debug("SearchClient closed app_id=%s", self._config.app_id)

    async def aclose(self) -> None:
        """Close from async code without blocking the caller's event loop."""
        await asyncio.get_running_loop().run_in_executor(None, self.close)

    def __enter__(self) -> SearchClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    async def __aenter__(self) -> SearchClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def _one_shot_config(
    app_id: str | None, api_key: str | None, timeout: float | None
) -> SearchConfig:
    overrides: dict[str, object] = {}
    if app_id is not None:
        overrides["app_id"] = app_id
    if api_key is not None:
        overrides["api_key"] = api_key
    if timeout is not None:
        overrides["timeout_search"] = timeout
    return SearchConfig.from_env(**overrides)


def search(
    index_name: str,
    query: Query | str | None = None,
    *,
    app_id: str | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
    _transport_override: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Search one index (one-shot convenience).

    Creates a temporary client for a single call. For repeated use, prefer
    ``SearchClient`` which keeps its connection pool and search caches.

    Args:
        index_name: Index to search.
        query: A :class:`Query` or plain search text.
        app_id: Application id. Falls back to HSEARCH_APP_ID env var.
        api_key: API key. Falls back to HSEARCH_API_KEY env var.
        timeout: Search read timeout in seconds.

    Raises:
        ValueError: If the configuration is invalid.
        SearchConnectionError: If no host is reachable.
        SearchAPIError: If the service returns an HTTP error.
        SearchResponseError: If the service returns unparseable data.
    """
    if isinstance(query, str):
        query = Query(query)
    config = _one_shot_config(app_id, api_key, timeout)
    with SearchClient(config, _transport=_transport_override) as client:
        return client.init_index(index_name).search(query).result()


async def asearch(
    index_name: str,
    query: Query | str | None = None,
    *,
    app_id: str | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
    _transport_override: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Async variant of search() (one-shot convenience).

    Same semantics as search() but awaits the operation instead of blocking.
    """
    if isinstance(query, str):
        query = Query(query)
    config = _one_shot_config(app_id, api_key, timeout)
    async with SearchClient(config, _transport=_transport_override) as client:
        return await client.init_index(index_name).search(query)
