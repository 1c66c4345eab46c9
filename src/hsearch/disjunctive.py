"""
Disjunctive faceting.

The engine combines facet filters with AND. To let the values selected
within a *disjunctive* facet be OR-combined while still showing counts for
that facet's other values, one logical search is sent as a batch of queries:
a global query with every refinement applied, plus one zero-hit query per
disjunctive facet that leaves out that facet's own refinement. The facet
counts of the extra queries are merged into the global response under
``disjunctiveFacets``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Union

from hsearch.models import IndexQuery, SearchResponseError
from hsearch.operation import CancellationToken
from hsearch.query import Query, _encode_value

if TYPE_CHECKING:
    from hsearch.index import Index

logger = logging.getLogger(__name__)

FacetFilter = Union[str, list[str]]
Refinements = Mapping[str, Iterable[Any]]


def _values(values: Iterable[Any]) -> list[str]:
    if isinstance(values, (list, tuple)):
        return [_encode_value(v) for v in values]
    # Unordered collections are sorted so the serialized query is stable.
    return sorted(_encode_value(v) for v in values)


def build_facet_filters(
    disjunctive_facets: Iterable[str],
    refinements: Refinements,
    excluded_facet: str | None = None,
) -> list[FacetFilter]:
    """Build ``facetFilters`` for the global query or for one disjunctive facet.

    Each disjunctive facet yields one OR-group of ``"name:value"`` atoms;
    each conjunctive facet yields one standalone atom per value. The
    *excluded_facet* contributes nothing.
    """
    disjunctive = set(disjunctive_facets)
    facet_filters: list[FacetFilter] = []
    for facet_name, facet_values in refinements.items():
        if facet_name == excluded_facet:
            continue
        atoms = [f"{facet_name}:{value}" for value in _values(facet_values)]
        if facet_name in disjunctive:
            if atoms:
                facet_filters.append(atoms)
        else:
            facet_filters.extend(atoms)
    return facet_filters


def _invalid(message: str, content: Mapping[str, Any]) -> SearchResponseError:
    return SearchResponseError(message, raw_body=json.dumps(content, default=str))


def aggregate_results(
    disjunctive_facets: Sequence[str],
    refinements: Refinements,
    content: Mapping[str, Any],
) -> dict[str, Any]:
    """Merge a multi-query response into the global result.

    Raises:
        SearchResponseError: ``results`` is missing, or any result is malformed.
    """
    results = content.get("results")
    if not isinstance(results, list):
        raise _invalid("No results in response", content)
    if not results or not isinstance(results[0], dict):
        raise _invalid("Invalid results in response", content)
    expected = 1 + len(disjunctive_facets)
    if len(results) != expected:
        raise _invalid(
            f"Invalid results in response: expected {expected} results, got {len(results)}",
            content,
        )

    disjunctive = set(disjunctive_facets)
    disjunctive_counts: dict[str, dict[str, Any]] = {}
    for facet_name, result in zip(disjunctive_facets, results[1:]):
        all_counts = result.get("facets") if isinstance(result, dict) else None
        if not isinstance(all_counts, dict) or not all(
            isinstance(counts, dict) for counts in all_counts.values()
        ):
            raise _invalid("Invalid results in response", content)

        for name, counts in all_counts.items():
            merged = dict(counts)
            if name in disjunctive:
                for value in _values(refinements.get(name, ())):
                    merged.setdefault(value, 0)
            disjunctive_counts[name] = merged

        if facet_name not in all_counts:
            disjunctive_counts[facet_name] = {
                value: 0 for value in _values(refinements.get(facet_name, ()))
            }

    main = dict(results[0])
    main["disjunctiveFacets"] = disjunctive_counts
    return main


class DisjunctiveFacetSearch:
    """One disjunctive-faceting search against *index*.

    The caller's query and refinements are copied at construction.
    """

    def __init__(
        self,
        index: Index,
        query: Query,
        disjunctive_facets: Sequence[str],
        refinements: Refinements,
    ) -> None:
        self._index = index
        self._query = query.copy()
        self._disjunctive_facets = list(disjunctive_facets)
        self._refinements = {name: _values(values) for name, values in refinements.items()}

    def build_queries(self) -> list[IndexQuery]:
        """Global query first, then one query per disjunctive facet, in order."""
        global_query = self._query.copy()
        global_query.facet_filters = build_facet_filters(
            self._disjunctive_facets, self._refinements
        )
        queries = [IndexQuery(self._index.name, global_query)]

        for facet_name in self._disjunctive_facets:
            facet_query = self._query.copy()
            facet_query.facets = [facet_name]
            facet_query.facet_filters = build_facet_filters(
                self._disjunctive_facets, self._refinements, excluded_facet=facet_name
            )
            # Only the facet counts are needed.
            facet_query.hits_per_page = 0
            facet_query.attributes_to_retrieve = []
            facet_query.attributes_to_highlight = []
            facet_query.attributes_to_snippet = []
            facet_query.analytics = False
            queries.append(IndexQuery(self._index.name, facet_query))
        return queries

    async def run(self, token: CancellationToken) -> dict[str, Any]:
        token.raise_if_cancelled()
        queries = self.build_queries()
        logger.debug(
            "Disjunctive faceting on %r: %d queries for facets %s",
            self._index.name,
            len(queries),
            self._disjunctive_facets,
        )
        content = await self._index.client._multiple_queries(queries)
        token.raise_if_cancelled()
        return aggregate_results(self._disjunctive_facets, self._refinements, content)
