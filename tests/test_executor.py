"""
Tests for the query executor's create-on-miss retry and fallbacks.
"""

from unittest.mock import MagicMock

import pytest

from couchquery.capabilities import CapabilityProfile
from couchquery.compiler import CompiledQuery
from couchquery.errors import CapabilityMismatch, DocumentNotFound, TransportError
from couchquery.executor import QueryExecutor
from couchquery.registry import IndexRegistry


def compiled_query(**kwargs):
    defaults = dict(design_name="person", view_name="find_by_name", map_source="m", reduce_source=None)
    defaults.update(kwargs)
    return CompiledQuery(**defaults)


@pytest.fixture
def transport():
    return MagicMock()


@pytest.fixture
def registry():
    return MagicMock(spec=IndexRegistry)


@pytest.fixture
def executor(transport, registry):
    return QueryExecutor(transport, registry, CapabilityProfile.from_version("0.9.0"))


class TestIndexedQueries:
    """COMPILED -> REGISTERING -> MATERIALIZED / FAILED."""

    def test_existing_view_queried_once(self, executor, transport, registry):
        transport.query_view.return_value = {"rows": []}

        result = executor.execute(compiled_query(params={"key": ["Alice"]}))

        assert result == {"rows": []}
        transport.query_view.assert_called_once_with("_design/person/_view/find_by_name", {"key": ["Alice"]})
        registry.ensure.assert_not_called()

    def test_missing_view_registered_then_retried(self, executor, transport, registry):
        transport.query_view.side_effect = [DocumentNotFound("missing"), {"rows": [{"id": "p1"}]}]

        result = executor.execute(compiled_query(reduce_source="r"))

        assert result == {"rows": [{"id": "p1"}]}
        registry.ensure.assert_called_once_with("find_by_name", "m", "r")
        assert transport.query_view.call_count == 2

    def test_gives_up_after_one_retry(self, executor, transport, registry):
        transport.query_view.side_effect = DocumentNotFound("still missing")

        with pytest.raises(DocumentNotFound):
            executor.execute(compiled_query())

        assert transport.query_view.call_count == 2
        registry.ensure.assert_called_once()

    def test_transport_errors_not_retried(self, executor, transport, registry):
        transport.query_view.side_effect = TransportError("boom", status_code=500)

        with pytest.raises(TransportError):
            executor.execute(compiled_query())

        assert transport.query_view.call_count == 1
        registry.ensure.assert_not_called()

    def test_legacy_view_path(self, transport, registry):
        executor = QueryExecutor(transport, registry, CapabilityProfile.from_version("0.8.1"))
        transport.query_view.return_value = {"rows": []}

        executor.execute(compiled_query())

        transport.query_view.assert_called_once_with("_view/person/find_by_name", {})


class TestAdHocQueries:
    """Slow queries bypass stored views."""

    def test_ad_hoc_query_sends_functions(self, executor, transport, registry):
        transport.query_ad_hoc.return_value = {"rows": []}

        executor.execute(compiled_query(slow=True, params={"limit": 1}))

        transport.query_ad_hoc.assert_called_once_with("_temp_view", "m", None, {"limit": 1})
        transport.query_view.assert_not_called()
        registry.ensure.assert_not_called()

    def test_ad_hoc_queries_can_be_disabled(self, transport, registry):
        executor = QueryExecutor(transport, registry, CapabilityProfile.from_version("0.9.0"), allow_ad_hoc=False)
        with pytest.raises(CapabilityMismatch):
            executor.execute(compiled_query(slow=True))


class TestPerKeyFallback:
    """Stores without multi-key lookups get one query per key."""

    def test_rows_merged_deduplicated_in_first_seen_order(self, transport, registry):
        executor = QueryExecutor(transport, registry, CapabilityProfile.from_version("0.8.1"))
        transport.query_view.side_effect = [
            {"rows": [{"id": "a"}, {"id": "b"}]},
            {"rows": [{"id": "b"}, {"id": "c"}]},
            {"rows": []},
        ]

        result = executor.execute(compiled_query(fallback_keys=[[9], [11], [12]]))

        assert [row["id"] for row in result["rows"]] == ["a", "b", "c"]
        sent_keys = [call.args[1]["key"] for call in transport.query_view.call_args_list]
        assert sent_keys == [[9], [11], [12]]

    def test_paging_applied_after_merge(self, transport, registry):
        executor = QueryExecutor(transport, registry, CapabilityProfile.from_version("0.8.1"))
        transport.query_view.side_effect = [
            {"rows": [{"id": "a"}, {"id": "b"}]},
            {"rows": [{"id": "c"}]},
        ]

        result = executor.execute(compiled_query(fallback_keys=[[1], [2]], params={"count": 2, "skip": 1}))

        assert [row["id"] for row in result["rows"]] == ["b", "c"]
        for call in transport.query_view.call_args_list:
            assert "count" not in call.args[1]
            assert "skip" not in call.args[1]
