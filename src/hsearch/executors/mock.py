"""In-memory mock executor for testing without network access."""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any

from hsearch.models import CallType, SearchAPIError


@dataclass(frozen=True)
class RecordedCall:
    """One call received by :class:`MockExecutor`."""

    path: str
    method: str
    body: dict[str, Any] | list[Any] | None
    call_type: CallType
    is_search_query: bool


class MockExecutor:
    """A :class:`~hsearch.executors.HttpExecutor` that serves scripted responses.

    Responses are registered per ``(method, path)``. Each call consumes the
    next scripted response; the last one repeats forever. An ``Exception``
    instance in the script is raised instead of returned. Calls to an
    unregistered route raise ``SearchAPIError(404)``.

    Usage::

        executor = MockExecutor()
        executor.add_route("POST", "1/indexes/products/query", {"hits": [], "nbHits": 0})
        client = SearchClient(config, executor=executor)
    """

    def __init__(self, *, latency: float = 0.0) -> None:
        self._routes: dict[tuple[str, str], list[Any]] = {}
        self._latency = latency
        self.calls: list[RecordedCall] = []
        self.closed = False

    def add_route(self, method: str, path: str, *responses: Any) -> MockExecutor:
        if not responses:
            raise ValueError("add_route() needs at least one response")
        self._routes[(method.upper(), path)] = list(responses)
        return self

    def calls_to(self, path: str, method: str | None = None) -> list[RecordedCall]:
        return [
            c
            for c in self.calls
            if c.path == path and (method is None or c.method == method.upper())
        ]

    async def execute(
        self,
        path: str,
        method: str,
        body: dict[str, Any] | list[Any] | None = None,
        call_type: CallType = CallType.READ,
        *,
        is_search_query: bool = False,
    ) -> dict[str, Any]:
        method = method.upper()
        self.calls.append(
            RecordedCall(path, method, copy.deepcopy(body), call_type, is_search_query)
        )
        if self._latency:
            await asyncio.sleep(self._latency)

        script = self._routes.get((method, path))
        if script is None:
            raise SearchAPIError(404, f"No route for {method} {path}")
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)

    async def aclose(self) -> None:
        self.closed = True
