"""Pluggable HTTP executors for hsearch.

The :class:`HttpExecutor` protocol is the single seam between the client's
orchestration logic and the network. The default implementation is
:class:`~hsearch.executors.http.HttpxExecutor`, which owns authentication,
host failover and retries; :class:`~hsearch.executors.mock.MockExecutor`
serves scripted responses for tests and offline development.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from hsearch.models import CallType


@runtime_checkable
class HttpExecutor(Protocol):
    """Protocol for executors used by :class:`~hsearch.client.SearchClient`.

    ``execute`` resolves exactly once: it returns the decoded JSON object or
    raises a :class:`~hsearch.models.SearchError`. Retries and host failover
    happen inside the executor and are invisible to callers.
    """

    async def execute(
        self,
        path: str,
        method: str,
        body: dict[str, Any] | list[Any] | None = None,
        call_type: CallType = CallType.READ,
        *,
        is_search_query: bool = False,
    ) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


__all__ = ["HttpExecutor"]
