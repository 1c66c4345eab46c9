"""
Data models and exception hierarchy for the hosted search client.

All public error types raised by the hsearch library are defined here,
together with the small value types shared by the index, client and
workflow modules.
"""

from __future__ import annotations

import enum
import urllib.parse
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hsearch.query import Query


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SearchError(Exception):
    """Base exception for all hsearch errors."""


class SearchConnectionError(SearchError):
    """No host could be reached or a transport-level error occurred (DNS, TCP, TLS, timeout)."""


class SearchAPIError(SearchError):
    """The search service returned an HTTP error (4xx/5xx)."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class SearchResponseError(SearchError):
    """The search service returned a response that does not have the expected shape."""

    def __init__(self, message: str, raw_body: str = "") -> None:
        self.raw_body = raw_body[:2000]
        super().__init__(message)


class SearchTimeoutError(SearchError):
    """A task was not published before the caller-supplied timeout elapsed."""


class OperationCancelled(Exception):
    """Raised at a step boundary once an operation has been cancelled.

    Not a :class:`SearchError`: cancellation is never reported to a
    completion callback.
    """


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


class CallType(enum.Enum):
    """Whether a call goes to the read (search) or the write (indexing) host pool."""

    READ = "read"
    WRITE = "write"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class IndexQuery:
    """One entry of a multi-query batch."""

    index_name: str
    query: Query

    def to_request(self) -> dict[str, str]:
        return {"indexName": self.index_name, "params": self.query.build()}


@dataclass
class SynonymQuery:
    """Search parameters for ``Index.search_synonyms``."""

    query: str = ""
    types: list[str] = field(default_factory=list)
    page: int | None = None
    hits_per_page: int | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"query": self.query}
        if self.types:
            body["type"] = ",".join(self.types)
        if self.page is not None:
            body["page"] = self.page
        if self.hits_per_page is not None:
            body["hitsPerPage"] = self.hits_per_page
        return body


def index_path(index_name: str) -> str:
    """API path prefix for *index_name*, with the name URL-encoded."""
    if not index_name:
        raise ValueError("index name must be a non-empty string")
    return f"1/indexes/{urllib.parse.quote(index_name, safe='')}"
