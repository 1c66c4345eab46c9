"""
Operations on one index.

Every public method returns an already started
:class:`~hsearch.operation.Operation` and accepts an optional keyword
``completion(content, error)`` callback. Writes resolve to a
:class:`~hsearch.tasks.WaitableWrapper` so callers can wait for the
service to publish them.

Usage::

    index = client.init_index("products")
    index.add_object({"name": "phone"}).result().wait()
    content = index.search(Query("phone")).result()
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
import urllib.parse
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from hsearch.cache import ExpiringCache
from hsearch.delete_by_query import DeleteByQueryCoordinator
from hsearch.disjunctive import DisjunctiveFacetSearch, Refinements
from hsearch.models import CallType, SynonymQuery, index_path
from hsearch.operation import CancellationToken, Completion, Operation
from hsearch.query import Query
from hsearch.tasks import TaskID, TaskWaiter, WaitableWrapper

if TYPE_CHECKING:
    from hsearch.client import SearchClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _quote(value: Any) -> str:
    return urllib.parse.quote(str(value), safe="")


def _with_params(path: str, **params: Any) -> str:
    """Append URL parameters, dropping ``None`` and encoding booleans as ``true``/``false``."""
    pairs = []
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((name, value))
    if not pairs:
        return path
    return f"{path}?{urllib.parse.urlencode(pairs)}"


def _require_object_id(obj: Mapping[str, Any], what: str = "object") -> str:
    object_id = obj.get("objectID")
    if object_id is None or object_id == "":
        raise ValueError(f"{what} must have an objectID")
    return str(object_id)


def _cache_key(path: str, body: Mapping[str, Any]) -> str:
    return f"{path}_body_{json.dumps(body, sort_keys=True)}"


class Index:
    """Handle on one remote index. Obtain it with :meth:`SearchClient.init_index`."""

    def __init__(self, name: str, client: SearchClient) -> None:
        self._path = index_path(name)
        self._name = name
        self._client = client
        self._cache_lock = threading.Lock()
        self._search_cache: ExpiringCache | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def client(self) -> SearchClient:
        return self._client

    def __repr__(self) -> str:
        return f"Index({self._name!r})"

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _launch(
        self,
        work: Callable[[CancellationToken], Awaitable[T]],
        completion: Completion | None,
        name: str,
    ) -> Operation[T]:
        return self._client._launch(work, completion, name=f"{name}[{self._name}]")

    async def _request(
        self,
        path: str,
        method: str,
        body: dict[str, Any] | list[Any] | None = None,
        call_type: CallType = CallType.READ,
        *,
        is_search_query: bool = False,
    ) -> dict[str, Any]:
        return await self._client.executor.execute(
            path, method, body, call_type, is_search_query=is_search_query
        )

    async def _write(
        self, path: str, method: str, body: dict[str, Any] | list[Any] | None = None
    ) -> WaitableWrapper:
        content = await self._request(path, method, body, CallType.WRITE)
        return WaitableWrapper.for_index(content, self._name, self._client)

    def _read_op(
        self,
        path: str,
        method: str,
        body: dict[str, Any] | None,
        completion: Completion | None,
        name: str,
    ) -> Operation[dict[str, Any]]:
        return self._launch(lambda token: self._request(path, method, body), completion, name)

    def _write_op(
        self,
        path: str,
        method: str,
        body: dict[str, Any] | list[Any] | None,
        completion: Completion | None,
        name: str,
    ) -> Operation[WaitableWrapper]:
        return self._launch(lambda token: self._write(path, method, body), completion, name)

    def _batch_op(
        self, requests: list[dict[str, Any]], completion: Completion | None, name: str
    ) -> Operation[WaitableWrapper]:
        return self._write_op(f"{self._path}/batch", "POST", {"requests": requests}, completion, name)

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    def add_object(
        self,
        obj: Mapping[str, Any],
        object_id: str | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        """Add an object, letting the service assign its id unless *object_id* is given."""
        body = copy.deepcopy(dict(obj))
        if object_id is None:
            return self._write_op(self._path, "POST", body, completion, "add_object")
        return self._write_op(
            f"{self._path}/{_quote(object_id)}", "PUT", body, completion, "add_object"
        )

    def add_objects(
        self, objects: Iterable[Mapping[str, Any]], *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        requests = [{"action": "addObject", "body": copy.deepcopy(dict(o))} for o in objects]
        return self._batch_op(requests, completion, "add_objects")

    def save_object(
        self, obj: Mapping[str, Any], *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        """Create or replace the object identified by its ``objectID``."""
        object_id = _require_object_id(obj)
        return self._write_op(
            f"{self._path}/{_quote(object_id)}",
            "PUT",
            copy.deepcopy(dict(obj)),
            completion,
            "save_object",
        )

    def save_objects(
        self, objects: Iterable[Mapping[str, Any]], *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        requests = [
            {"action": "updateObject", "objectID": _require_object_id(o), "body": copy.deepcopy(dict(o))}
            for o in objects
        ]
        return self._batch_op(requests, completion, "save_objects")

    def partial_update_object(
        self,
        partial: Mapping[str, Any],
        object_id: str,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        if not object_id:
            raise ValueError("object_id must be a non-empty string")
        return self._write_op(
            f"{self._path}/{_quote(object_id)}/partial",
            "POST",
            copy.deepcopy(dict(partial)),
            completion,
            "partial_update_object",
        )

    def partial_update_objects(
        self, objects: Iterable[Mapping[str, Any]], *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        requests = [
            {
                "action": "partialUpdateObject",
                "objectID": _require_object_id(o),
                "body": copy.deepcopy(dict(o)),
            }
            for o in objects
        ]
        return self._batch_op(requests, completion, "partial_update_objects")

    def delete_object(
        self, object_id: str, *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        if not object_id:
            raise ValueError("object_id must be a non-empty string")
        return self._write_op(
            f"{self._path}/{_quote(object_id)}", "DELETE", None, completion, "delete_object"
        )

    def delete_objects(
        self, object_ids: Iterable[str], *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        ids = list(object_ids)
        return self._launch(
            lambda token: self._delete_objects(ids), completion, "delete_objects"
        )

    async def _delete_object_ids(self, object_ids: Sequence[str]) -> dict[str, Any]:
        requests = [{"action": "deleteObject", "objectID": oid} for oid in object_ids]
        return await self._request(
            f"{self._path}/batch", "POST", {"requests": requests}, CallType.WRITE
        )

    async def _delete_objects(self, object_ids: Sequence[str]) -> WaitableWrapper:
        content = await self._delete_object_ids(object_ids)
        return WaitableWrapper.for_index(content, self._name, self._client)

    def get_object(
        self,
        object_id: str,
        attributes_to_retrieve: Sequence[str] | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[dict[str, Any]]:
        if not object_id:
            raise ValueError("object_id must be a non-empty string")
        attributes = ",".join(attributes_to_retrieve) if attributes_to_retrieve else None
        path = _with_params(f"{self._path}/{_quote(object_id)}", attributesToRetrieve=attributes)
        return self._read_op(path, "GET", None, completion, "get_object")

    def get_objects(
        self, object_ids: Iterable[str], *, completion: Completion | None = None
    ) -> Operation[dict[str, Any]]:
        requests = [{"indexName": self._name, "objectID": oid} for oid in object_ids]
        return self._read_op(
            "1/indexes/*/objects", "POST", {"requests": requests}, completion, "get_objects"
        )

    def batch(
        self, actions: Iterable[Mapping[str, Any]], *, completion: Completion | None = None
    ) -> Operation[WaitableWrapper]:
        """Send raw batch actions (``{"action": ..., "body"/"objectID": ...}``)."""
        return self._batch_op([copy.deepcopy(dict(a)) for a in actions], completion, "batch")

    # ------------------------------------------------------------------
    # Search and browse
    # ------------------------------------------------------------------

    def search(
        self, query: Query | None = None, *, completion: Completion | None = None
    ) -> Operation[dict[str, Any]]:
        """Search the index. Served from the search cache when it is enabled."""
        body = {"params": (query or Query()).build()}
        return self._launch(lambda token: self._search(body), completion, "search")

    async def _search(self, body: dict[str, Any]) -> dict[str, Any]:
        path = f"{self._path}/query"
        key = _cache_key(path, body)
        cache = self._search_cache
        if cache is not None:
            cached = cache.get(key)
            if cached is not None:
                logger.debug("Search cache hit on %r", self._name)
                return copy.deepcopy(cached)

        content = await self._request(path, "POST", body, is_search_query=True)

        # Re-read: the cache may have been disabled while the request was in flight.
        cache = self._search_cache
        if cache is not None:
            cache.put(key, copy.deepcopy(content))
        return content

    def browse(
        self, query: Query | None = None, *, completion: Completion | None = None
    ) -> Operation[dict[str, Any]]:
        """Fetch the first page of every object matching *query*."""
        query = (query or Query()).copy()
        return self._launch(lambda token: self._browse(query), completion, "browse")

    async def _browse(self, query: Query) -> dict[str, Any]:
        return await self._request(f"{self._path}/browse", "POST", {"params": query.build()})

    def browse_from(
        self, cursor: str, *, completion: Completion | None = None
    ) -> Operation[dict[str, Any]]:
        """Fetch the page following *cursor*."""
        if not cursor:
            raise ValueError("cursor must be a non-empty string")
        path = _with_params(f"{self._path}/browse", cursor=cursor)
        return self._read_op(path, "GET", None, completion, "browse_from")

    def search_disjunctive_faceting(
        self,
        query: Query,
        disjunctive_facets: Sequence[str],
        refinements: Refinements,
        *,
        completion: Completion | None = None,
    ) -> Operation[dict[str, Any]]:
        """Search with OR semantics inside each of *disjunctive_facets*.

        The result is the regular search response plus a ``disjunctiveFacets``
        mapping of facet name to value counts.
        """
        search = DisjunctiveFacetSearch(self, query, disjunctive_facets, refinements)
        return self._launch(search.run, completion, "search_disjunctive_faceting")

    # ------------------------------------------------------------------
    # Settings and maintenance
    # ------------------------------------------------------------------

    def get_settings(self, *, completion: Completion | None = None) -> Operation[dict[str, Any]]:
        return self._read_op(f"{self._path}/settings", "GET", None, completion, "get_settings")

    def set_settings(
        self,
        settings: Mapping[str, Any],
        forward_to_replicas: bool | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        path = _with_params(f"{self._path}/settings", forwardToReplicas=forward_to_replicas)
        return self._write_op(path, "PUT", copy.deepcopy(dict(settings)), completion, "set_settings")

    def clear_index(self, *, completion: Completion | None = None) -> Operation[WaitableWrapper]:
        """Delete every object, keeping settings."""
        return self._write_op(f"{self._path}/clear", "POST", None, completion, "clear_index")

    def wait_task(
        self,
        task_id: TaskID,
        timeout: float | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[dict[str, Any]]:
        """Poll until task *task_id* is published; resolves to the final status response."""
        return self._launch(
            lambda token: self._wait_task(token, task_id, timeout), completion, "wait_task"
        )

    async def _wait_task(
        self, token: CancellationToken, task_id: TaskID, timeout: float | None
    ) -> dict[str, Any]:
        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + timeout
        waiter = TaskWaiter(
            self._client.executor,
            self._name,
            task_id,
            interval=self._client.config.task_poll_interval,
            deadline=deadline,
        )
        return await waiter.run(token)

    def delete_by_query(
        self, query: Query, *, completion: Completion | None = None
    ) -> Operation[None]:
        """Delete every object matching *query*. Resolves to ``None``."""
        coordinator = DeleteByQueryCoordinator(self, query)
        return self._launch(coordinator.run, completion, "delete_by_query")

    # ------------------------------------------------------------------
    # Search cache
    # ------------------------------------------------------------------

    @property
    def search_cache_enabled(self) -> bool:
        return self._search_cache is not None

    def enable_search_cache(self, ttl: float | None = None) -> None:
        """Cache search responses for *ttl* seconds (default ``search_cache_ttl``).

        Replaces any existing cache, dropping its entries.
        """
        cache = ExpiringCache(
            ttl if ttl is not None else self._client.config.search_cache_ttl,
            self._client.config.cache_max_entries,
        )
        with self._cache_lock:
            self._search_cache = cache
        logger.debug("Search cache enabled on %r ttl=%.1fs", self._name, cache.ttl)

    def disable_search_cache(self) -> None:
        with self._cache_lock:
            cache, self._search_cache = self._search_cache, None
        if cache is not None:
            cache.clear()
            logger.debug("Search cache disabled on %r", self._name)

    def clear_search_cache(self) -> None:
        cache = self._search_cache
        if cache is not None:
            cache.clear()

    # ------------------------------------------------------------------
    # Synonyms
    # ------------------------------------------------------------------

    def save_synonym(
        self,
        synonym: Mapping[str, Any],
        forward_to_replicas: bool | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        object_id = _require_object_id(synonym, "synonym")
        path = _with_params(
            f"{self._path}/synonyms/{_quote(object_id)}", forwardToReplicas=forward_to_replicas
        )
        return self._write_op(path, "PUT", copy.deepcopy(dict(synonym)), completion, "save_synonym")

    def save_synonyms(
        self,
        synonyms: Iterable[Mapping[str, Any]],
        forward_to_replicas: bool | None = None,
        clear_existing_synonyms: bool | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        body = []
        for synonym in synonyms:
            _require_object_id(synonym, "synonym")
            body.append(copy.deepcopy(dict(synonym)))
        path = _with_params(
            f"{self._path}/synonyms/batch",
            forwardToReplicas=forward_to_replicas,
            replaceExistingSynonyms=clear_existing_synonyms,
        )
        return self._write_op(path, "POST", body, completion, "save_synonyms")

    def replace_all_synonyms(
        self,
        synonyms: Iterable[Mapping[str, Any]],
        forward_to_replicas: bool | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        """Atomically replace every synonym of the index with *synonyms*."""
        return self.save_synonyms(
            synonyms,
            forward_to_replicas=forward_to_replicas,
            clear_existing_synonyms=True,
            completion=completion,
        )

    def get_synonym(
        self, object_id: str, *, completion: Completion | None = None
    ) -> Operation[dict[str, Any]]:
        if not object_id:
            raise ValueError("object_id must be a non-empty string")
        return self._read_op(
            f"{self._path}/synonyms/{_quote(object_id)}", "GET", None, completion, "get_synonym"
        )

    def delete_synonym(
        self,
        object_id: str,
        forward_to_replicas: bool | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        if not object_id:
            raise ValueError("object_id must be a non-empty string")
        path = _with_params(
            f"{self._path}/synonyms/{_quote(object_id)}", forwardToReplicas=forward_to_replicas
        )
        return self._write_op(path, "DELETE", None, completion, "delete_synonym")

    def search_synonyms(
        self,
        synonym_query: SynonymQuery | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[dict[str, Any]]:
        body = (synonym_query or SynonymQuery()).to_body()
        return self._read_op(
            f"{self._path}/synonyms/search", "POST", body, completion, "search_synonyms"
        )

    def clear_synonyms(
        self,
        forward_to_replicas: bool | None = None,
        *,
        completion: Completion | None = None,
    ) -> Operation[WaitableWrapper]:
        path = _with_params(f"{self._path}/synonyms/clear", forwardToReplicas=forward_to_replicas)
        return self._write_op(path, "POST", None, completion, "clear_synonyms")
