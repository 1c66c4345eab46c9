"""
Search query parameters.

A :class:`Query` is a mutable bag of search parameters that serializes to
the URL-encoded ``params`` string the search API expects. Parameters are
stored under their wire names; the common ones are exposed as snake_case
properties, anything else goes through :meth:`Query.set` / :meth:`Query.get`.

Usage::

    query = Query("phone")
    query.facets = ["brand", "category"]
    query.hits_per_page = 20
    query.build()   # 'facets=%5B%22brand%22%2C%22category%22%5D&hitsPerPage=20&query=phone'
"""

from __future__ import annotations

import copy
import json
import urllib.parse
from typing import Any


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


class _Param:
    """Descriptor mapping a snake_case attribute to a wire parameter name."""

    def __init__(self, wire_name: str) -> None:
        self.wire_name = wire_name

    def __get__(self, obj: Query | None, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return obj.get(self.wire_name)

    def __set__(self, obj: Query, value: Any) -> None:
        obj.set(self.wire_name, value)


class Query:
    """Mutable search parameter bag. Equality is by serialized form."""

    query = _Param("query")
    facets = _Param("facets")
    facet_filters = _Param("facetFilters")
    filters = _Param("filters")
    numeric_filters = _Param("numericFilters")
    tag_filters = _Param("tagFilters")
    hits_per_page = _Param("hitsPerPage")
    page = _Param("page")
    attributes_to_retrieve = _Param("attributesToRetrieve")
    attributes_to_highlight = _Param("attributesToHighlight")
    attributes_to_snippet = _Param("attributesToSnippet")
    analytics = _Param("analytics")
    get_ranking_info = _Param("getRankingInfo")
    distinct = _Param("distinct")
    max_values_per_facet = _Param("maxValuesPerFacet")
    typo_tolerance = _Param("typoTolerance")
    around_lat_lng = _Param("aroundLatLng")

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, query: str | None = None, **params: Any) -> None:
        self._params: dict[str, Any] = {}
        if query is not None:
            self.query = query
        for name, value in params.items():
            self.set(name, value)

    def set(self, name: str, value: Any) -> Query:
        """Set a parameter by wire name. ``None`` removes it."""
        if value is None:
            self._params.pop(name, None)
        else:
            self._params[name] = value
        return self

    def get(self, name: str) -> Any:
        return self._params.get(name)

    @property
    def parameters(self) -> dict[str, Any]:
        """A copy of the parameters currently set, keyed by wire name."""
        return copy.deepcopy(self._params)

    def build(self) -> str:
        """Serialize to a URL-encoded parameter string with keys in sorted order."""
        pairs = [(name, _encode_value(self._params[name])) for name in sorted(self._params)]
        return urllib.parse.urlencode(pairs)

    def copy(self) -> Query:
        clone = Query()
        clone._params = copy.deepcopy(self._params)
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Query):
            return NotImplemented
        return self.build() == other.build()

    def __repr__(self) -> str:
        return f"Query({self.build()!r})"
