"""hsearch: client for a hosted search-as-a-service API."""

from hsearch.client import SearchClient, asearch, search
from hsearch.config import SearchConfig
from hsearch.delete_by_query import DeleteByQueryCoordinator, DeleteByQueryState
from hsearch.disjunctive import DisjunctiveFacetSearch, aggregate_results, build_facet_filters
from hsearch.index import Index
from hsearch.logging import bind_request_id, configure_logging, get_request_id, request_id_bound
from hsearch.models import (
    CallType,
    IndexQuery,
    OperationCancelled,
    SearchAPIError,
    SearchConnectionError,
    SearchError,
    SearchResponseError,
    SearchTimeoutError,
    SynonymQuery,
)
from hsearch.operation import CancellationToken, Operation, OperationState
from hsearch.query import Query
from hsearch.tasks import TaskWaiter, WaitableWrapper

__version__ = "0.1.0"

__all__ = [
    "CallType",
    "CancellationToken",
    "DeleteByQueryCoordinator",
    "DeleteByQueryState",
    "DisjunctiveFacetSearch",
    "Index",
    "IndexQuery",
    "Operation",
    "OperationCancelled",
    "OperationState",
    "Query",
    "SearchAPIError",
    "SearchClient",
    "SearchConfig",
    "SearchConnectionError",
    "SearchError",
    "SearchResponseError",
    "SearchTimeoutError",
    "SynonymQuery",
    "TaskWaiter",
    "WaitableWrapper",
    "__version__",
    "aggregate_results",
    "asearch",
    "bind_request_id",
    "build_facet_filters",
    "configure_logging",
    "get_request_id",
    "request_id_bound",
    "search",
]
