"""Tests for hsearch.index -- request shapes, search cache, and synonyms."""

from __future__ import annotations

import time

import pytest

from hsearch.client import SearchClient
from hsearch.config import SearchConfig
from hsearch.executors.mock import MockExecutor
from hsearch.index import Index
from hsearch.models import CallType, SearchAPIError, SynonymQuery
from hsearch.query import Query
from hsearch.tasks import WaitableWrapper

from conftest import Recorder

BASE = "1/indexes/products"
SEARCH = f"{BASE}/query"
WRITE_ACK = {"taskID": 5, "objectID": "a1"}


class TestObjects:
    def test_add_object_without_id_posts(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", BASE, WRITE_ACK)
        wrapper = index.add_object({"name": "phone"}).result(timeout=2)
        assert isinstance(wrapper, WaitableWrapper)
        (call,) = executor.calls
        assert call.body == {"name": "phone"}
        assert call.call_type is CallType.WRITE

    def test_add_object_with_id_puts(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("PUT", f"{BASE}/a1", WRITE_ACK)
        index.add_object({"name": "phone"}, "a1").result(timeout=2)
        assert executor.calls[0].method == "PUT"

    def test_add_objects_batch(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/batch", {"taskID": 5, "objectIDs": ["1", "2"]})
        index.add_objects([{"name": "a"}, {"name": "b"}]).result(timeout=2)
        assert executor.calls[0].body == {
            "requests": [
                {"action": "addObject", "body": {"name": "a"}},
                {"action": "addObject", "body": {"name": "b"}},
            ]
        }

    def test_save_object(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("PUT", f"{BASE}/a1", WRITE_ACK)
        index.save_object({"objectID": "a1", "name": "phone"}).result(timeout=2)
        assert executor.calls[0].body == {"objectID": "a1", "name": "phone"}

    def test_save_object_requires_object_id(self, index: Index, executor: MockExecutor) -> None:
        with pytest.raises(ValueError, match="objectID"):
            index.save_object({"name": "phone"})
        assert executor.calls == []

    def test_save_objects(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/batch", {"taskID": 5})
        index.save_objects([{"objectID": "a1", "n": 1}]).result(timeout=2)
        assert executor.calls[0].body == {
            "requests": [{"action": "updateObject", "objectID": "a1", "body": {"objectID": "a1", "n": 1}}]
        }

    def test_save_objects_requires_every_object_id(self, index: Index) -> None:
        with pytest.raises(ValueError):
            index.save_objects([{"objectID": "a1"}, {"name": "no id"}])

    def test_partial_update_object(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/a1/partial", WRITE_ACK)
        index.partial_update_object({"price": 10}, "a1").result(timeout=2)
        assert executor.calls[0].body == {"price": 10}

    def test_partial_update_objects(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/batch", {"taskID": 5})
        index.partial_update_objects([{"objectID": "a1", "price": 10}]).result(timeout=2)
        assert executor.calls[0].body["requests"][0]["action"] == "partialUpdateObject"

    def test_delete_object(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("DELETE", f"{BASE}/a%2F1", {"taskID": 5})
        wrapper = index.delete_object("a/1").result(timeout=2)
        assert wrapper.task_id == 5

    def test_delete_objects(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/batch", {"taskID": 5})
        index.delete_objects(["a", "b"]).result(timeout=2)
        assert executor.calls[0].body == {
            "requests": [
                {"action": "deleteObject", "objectID": "a"},
                {"action": "deleteObject", "objectID": "b"},
            ]
        }

    @pytest.mark.parametrize(
        "call",
        [
            lambda idx: idx.delete_object(""),
            lambda idx: idx.get_object(""),
            lambda idx: idx.partial_update_object({"a": 1}, ""),
            lambda idx: idx.get_synonym(""),
            lambda idx: idx.delete_synonym(""),
            lambda idx: idx.browse_from(""),
        ],
    )
    def test_empty_identifiers_rejected(self, index: Index, call: object) -> None:
        with pytest.raises(ValueError):
            call(index)  # type: ignore[operator]

    def test_get_object_with_attributes(self, index: Index, executor: MockExecutor) -> None:
        path = f"{BASE}/a1?attributesToRetrieve=name%2Cprice"
        executor.add_route("GET", path, {"objectID": "a1", "name": "phone"})
        content = index.get_object("a1", ["name", "price"]).result(timeout=2)
        assert content["name"] == "phone"
        assert executor.calls[0].call_type is CallType.READ

    def test_get_objects(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", "1/indexes/*/objects", {"results": [{"objectID": "a"}]})
        index.get_objects(["a", "b"]).result(timeout=2)
        assert executor.calls[0].body == {
            "requests": [
                {"indexName": "products", "objectID": "a"},
                {"indexName": "products", "objectID": "b"},
            ]
        }

    def test_batch_copies_actions(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/batch", {"taskID": 5})
        action = {"action": "clear"}
        op = index.batch([action])
        action["action"] = "changed"
        op.result(timeout=2)
        assert executor.calls[0].body == {"requests": [{"action": "clear"}]}

    def test_index_name_is_encoded(self, client: SearchClient, executor: MockExecutor) -> None:
        executor.add_route("GET", "1/indexes/my%20index%2Fv2/settings", {"hitsPerPage": 20})
        assert client.init_index("my index/v2").get_settings().result(timeout=2) == {"hitsPerPage": 20}

    def test_empty_index_name(self, client: SearchClient) -> None:
        with pytest.raises(ValueError, match="index name"):
            client.init_index("")


class TestSettingsAndMaintenance:
    def test_set_settings_forward_to_replicas(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("PUT", f"{BASE}/settings?forwardToReplicas=true", {"taskID": 5})
        index.set_settings({"hitsPerPage": 50}, forward_to_replicas=True).result(timeout=2)
        assert executor.calls[0].body == {"hitsPerPage": 50}

    def test_set_settings_without_flag(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("PUT", f"{BASE}/settings", {"taskID": 5})
        index.set_settings({"hitsPerPage": 50}).result(timeout=2)
        assert executor.calls[0].path == f"{BASE}/settings"

    def test_clear_index(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/clear", {"taskID": 5})
        assert index.clear_index().result(timeout=2).task_id == 5

    def test_http_error_delivered(self, index: Index, executor: MockExecutor, recorder: Recorder) -> None:
        executor.add_route("GET", f"{BASE}/settings", SearchAPIError(404, "Index does not exist"))
        index.get_settings(completion=recorder)
        assert recorder.wait()
        assert isinstance(recorder.error, SearchAPIError)
        assert recorder.error.status_code == 404


class TestSearch:
    def test_search_body_and_flags(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": [], "nbHits": 0})
        index.search(Query("phone", hitsPerPage=5)).result(timeout=2)
        (call,) = executor.calls
        assert call.body == {"params": "hitsPerPage=5&query=phone"}
        assert call.is_search_query
        assert call.call_type is CallType.READ

    def test_search_without_query(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        index.search().result(timeout=2)
        assert executor.calls[0].body == {"params": ""}

    def test_query_serialized_at_call_time(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        query = Query("phone")
        op = index.search(query)
        query.query = "tablet"
        op.result(timeout=2)
        assert executor.calls[0].body == {"params": "query=phone"}

    async def test_search_awaitable(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": [{"objectID": "1"}]})
        content = await index.search(Query("phone"))
        assert content["hits"] == [{"objectID": "1"}]


class TestSearchCache:
    def test_disabled_by_default(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        assert not index.search_cache_enabled
        index.search(Query("a")).result(timeout=2)
        index.search(Query("a")).result(timeout=2)
        assert len(executor.calls) == 2

    def test_identical_search_served_once(
        self, index: Index, executor: MockExecutor, recorder: Recorder
    ) -> None:
        executor.add_route("POST", SEARCH, {"hits": [{"objectID": "1"}]})
        index.enable_search_cache()
        first = index.search(Query("a")).result(timeout=2)
        index.search(Query("a"), completion=recorder)
        assert recorder.wait()
        assert recorder.content == first
        assert recorder.threads[0].startswith("hsearch-callback")
        assert len(executor.calls) == 1

    def test_different_queries_are_separate_entries(
        self, index: Index, executor: MockExecutor
    ) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        index.enable_search_cache()
        index.search(Query("a")).result(timeout=2)
        index.search(Query("b")).result(timeout=2)
        assert len(executor.calls) == 2

    def test_hits_are_copies(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": [{"objectID": "1"}]})
        index.enable_search_cache()
        first = index.search(Query("a")).result(timeout=2)
        first["hits"].clear()
        second = index.search(Query("a")).result(timeout=2)
        assert second["hits"] == [{"objectID": "1"}]

    def test_errors_are_not_cached(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, SearchAPIError(503, "busy"), {"hits": []})
        index.enable_search_cache()
        with pytest.raises(SearchAPIError):
            index.search(Query("a")).result(timeout=2)
        assert index.search(Query("a")).result(timeout=2) == {"hits": []}
        assert len(executor.calls) == 2

    def test_ttl_expiry(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        index.enable_search_cache(ttl=0.02)
        index.search(Query("a")).result(timeout=2)
        time.sleep(0.04)
        index.search(Query("a")).result(timeout=2)
        assert len(executor.calls) == 2

    def test_disable(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        index.enable_search_cache()
        index.search(Query("a")).result(timeout=2)
        index.disable_search_cache()
        assert not index.search_cache_enabled
        index.search(Query("a")).result(timeout=2)
        assert len(executor.calls) == 2

    def test_clear(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        index.enable_search_cache()
        index.search(Query("a")).result(timeout=2)
        index.clear_search_cache()
        assert index.search_cache_enabled
        index.search(Query("a")).result(timeout=2)
        assert len(executor.calls) == 2

    def test_reenable_drops_entries(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", SEARCH, {"hits": []})
        index.enable_search_cache()
        index.search(Query("a")).result(timeout=2)
        index.enable_search_cache(ttl=60)
        index.search(Query("a")).result(timeout=2)
        assert len(executor.calls) == 2

    def test_disable_during_flight_does_not_store(self, config: SearchConfig) -> None:
        slow = MockExecutor(latency=0.05).add_route("POST", SEARCH, {"hits": []})
        with SearchClient(config, executor=slow) as slow_client:
            idx = slow_client.init_index("products")
            idx.enable_search_cache()
            op = idx.search(Query("a"))
            idx.disable_search_cache()
            op.result(timeout=2)
            idx.enable_search_cache()
            idx.search(Query("a")).result(timeout=2)
        assert len(slow.calls) == 2


class TestBrowse:
    def test_browse(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/browse", {"hits": [], "cursor": "c1"})
        content = index.browse(Query(filters="brand:acme")).result(timeout=2)
        assert content["cursor"] == "c1"
        assert executor.calls[0].body == {"params": "filters=brand%3Aacme"}

    def test_browse_from(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("GET", f"{BASE}/browse?cursor=abc%3D%3D", {"hits": []})
        index.browse_from("abc==").result(timeout=2)
        assert executor.calls[0].body is None


class TestSynonyms:
    SYNONYM = {"objectID": "s1", "type": "synonym", "synonyms": ["phone", "mobile"]}

    def test_save_synonym(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("PUT", f"{BASE}/synonyms/s1?forwardToReplicas=false", {"taskID": 5})
        index.save_synonym(self.SYNONYM, forward_to_replicas=False).result(timeout=2)
        assert executor.calls[0].body == self.SYNONYM

    def test_save_synonym_requires_object_id(self, index: Index) -> None:
        with pytest.raises(ValueError, match="synonym"):
            index.save_synonym({"type": "synonym"})

    def test_save_synonyms_sends_list(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/synonyms/batch", {"taskID": 5})
        index.save_synonyms([self.SYNONYM]).result(timeout=2)
        assert executor.calls[0].body == [self.SYNONYM]

    def test_replace_all_synonyms(self, index: Index, executor: MockExecutor) -> None:
        path = f"{BASE}/synonyms/batch?forwardToReplicas=true&replaceExistingSynonyms=true"
        executor.add_route("POST", path, {"taskID": 5})
        index.replace_all_synonyms([self.SYNONYM], forward_to_replicas=True).result(timeout=2)
        assert len(executor.calls_to(path)) == 1

    def test_get_and_delete_synonym(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("GET", f"{BASE}/synonyms/s1", self.SYNONYM)
        executor.add_route("DELETE", f"{BASE}/synonyms/s1", {"taskID": 5})
        assert index.get_synonym("s1").result(timeout=2) == self.SYNONYM
        assert index.delete_synonym("s1").result(timeout=2).task_id == 5

    def test_search_synonyms(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/synonyms/search", {"hits": [], "nbHits": 0})
        index.search_synonyms(
            SynonymQuery("phone", types=["synonym", "oneWaySynonym"], hits_per_page=10)
        ).result(timeout=2)
        assert executor.calls[0].body == {
            "query": "phone",
            "type": "synonym,oneWaySynonym",
            "hitsPerPage": 10,
        }

    def test_clear_synonyms(self, index: Index, executor: MockExecutor) -> None:
        executor.add_route("POST", f"{BASE}/synonyms/clear?forwardToReplicas=true", {"taskID": 5})
        index.clear_synonyms(forward_to_replicas=True).result(timeout=2)
        assert executor.calls[0].call_type is CallType.WRITE
