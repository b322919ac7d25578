"""Tests for the AutoGather service operations."""

import os
import re
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.database import StoreConfig
from config.settings import AutoGatherConfig
from indexer.source_schema import CrawlStatus, DocumentType, SourceFilters
from services.gather import AutoGather, generate_source_id
from services.shared.errors import NotFoundError, ValidationError
from services.shared.requests import AddSourceRequest, SearchRequest, UpdateSourceRequest


def add_local(gather, root, name="docs", **kwargs):
    return gather.add_source(AddSourceRequest(name=name, type="local", url=f"file://{root}", **kwargs))


class TestSources:
    def test_generated_ids(self):
        first, second = generate_source_id(), generate_source_id()
        assert re.match(r"^source_\d+_[0-9a-z]{9}$", first)
        assert first != second

    def test_add_and_get(self, gather, docs_dir):
        source = add_local(gather, docs_dir, filters=SourceFilters(include=["*.md"]))

        loaded = gather.get_source(source.id)
        assert loaded.name == "docs"
        assert loaded.filters.include == ["*.md"]
        assert loaded.last_crawled is None
        assert [s.id for s in gather.list_sources()] == [source.id]

    @pytest.mark.parametrize("request_kwargs, field", [
        ({"name": "", "type": "local", "url": "file:///tmp"}, "name"),
        ({"name": "x", "type": "ftp", "url": "file:///tmp"}, "type"),
        ({"name": "x", "type": "local", "url": "/tmp/no-scheme"}, "url"),
        ({"name": "x", "type": "local", "url": "file:///tmp",
          "filters": SourceFilters(max_depth=0)}, "filters.max_depth"),
        ({"name": "x", "type": "local", "url": "file:///tmp",
          "filters": SourceFilters(include="*.md")}, "filters.include"),
    ])
    def test_invalid_add_is_rejected_before_any_write(self, gather, request_kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            gather.add_source(AddSourceRequest(**request_kwargs))

        assert exc_info.value.field == field
        assert gather.list_sources() == []

    def test_request_from_dict(self):
        request = AddSourceRequest.from_dict({
            "name": "wiki", "url": "file:///srv/wiki", "filters": {"maxDepth": 4}})
        request.validate()
        assert request.type == "local"
        assert request.filters.max_depth == 4

        with pytest.raises(ValidationError):
            AddSourceRequest.from_dict({"name": "wiki", "url": "file:///x", "filters": ["*.md"]})

    @pytest.mark.parametrize("key", ["include", "exclude"])
    def test_string_pattern_is_rejected_not_split(self, key):
        with pytest.raises(ValidationError) as exc_info:
            AddSourceRequest.from_dict({"name": "wiki", "url": "file:///x", "filters": {key: "*.md"}})
        assert exc_info.value.field == f"filters.{key}"

        with pytest.raises(ValidationError):
            UpdateSourceRequest.from_dict({"source_id": "s1", "filters": {key: "drafts"}})

    def test_unknown_source(self, gather):
        with pytest.raises(NotFoundError, match="Source not found: nope"):
            gather.get_source("nope")
        with pytest.raises(NotFoundError):
            gather.update_source(UpdateSourceRequest(source_id="nope", name="x"))
        with pytest.raises(NotFoundError):
            gather.delete_source("nope")
        with pytest.raises(NotFoundError):
            gather.crawl_source("nope")
        with pytest.raises(NotFoundError):
            gather.get_status("nope")

    def test_update_merges_filters(self, gather, docs_dir):
        source = add_local(gather, docs_dir, filters=SourceFilters(include=["*.md"], max_depth=3))

        updated = gather.update_source(UpdateSourceRequest(
            source_id=source.id,
            enabled=False,
            filters=SourceFilters(exclude=["drafts/**"]),
        ))

        assert updated.name == "docs"
        assert updated.enabled is False
        assert updated.filters == SourceFilters(include=["*.md"], exclude=["drafts/**"], max_depth=3)
        assert gather.get_source(source.id).filters == updated.filters

    def test_invalid_update_leaves_source_untouched(self, gather, docs_dir):
        source = add_local(gather, docs_dir)

        with pytest.raises(ValidationError):
            gather.update_source(UpdateSourceRequest(source_id=source.id, name="  "))

        assert gather.get_source(source.id).name == "docs"

    def test_delete_cascades(self, gather, docs_dir):
        source = add_local(gather, docs_dir)
        gather.crawl_source(source.id)
        assert gather.search(SearchRequest(query="Setup"))

        assert gather.delete_source(source.id) is True

        assert gather.list_sources() == []
        assert gather.store.count_documents(source.id) == 0
        assert gather.store.get_source_status(source.id) is None
        assert gather.search(SearchRequest(query="Setup")) == []


class TestCrawlAndSearch:
    def test_crawl_then_search(self, gather, docs_dir):
        source = add_local(gather, docs_dir)

        result = gather.crawl_source(source.id)
        assert result.status == CrawlStatus.SUCCESS
        assert result.processed == 6

        results = gather.search(SearchRequest(query="Setup"))
        assert results[0].document.title == "Setup"
        assert results[0].document.tags == ["setup"]
        assert 0.0 <= results[0].score <= 1.0

    def test_search_filters_by_type(self, gather, docs_dir):
        source = add_local(gather, docs_dir)
        gather.crawl_source(source.id)

        results = gather.search(SearchRequest(query="Payments", types=["json"]))
        assert [r.document.type for r in results] == [DocumentType.JSON]

    def test_invalid_search_requests(self, gather):
        with pytest.raises(ValidationError) as exc_info:
            gather.search(SearchRequest(query="x", threshold=1.5))
        assert exc_info.value.field == "threshold"

        with pytest.raises(ValidationError):
            gather.search(SearchRequest(query="x", types=["spreadsheet"]))
        with pytest.raises(ValidationError):
            gather.search(SearchRequest(query="x", limit=0))

    def test_crawl_all_enabled_and_summary(self, gather, docs_dir, tmp_path):
        add_local(gather, docs_dir, name="a-docs")
        add_local(gather, tmp_path / "missing", name="b-missing")
        add_local(gather, docs_dir, name="c-off", enabled=False)

        results = gather.crawl_all_enabled()
        summary = gather.summarize_runs(results)

        assert summary["sources_processed"] == 2
        assert summary["total_documents_found"] == 6
        assert summary["total_documents_processed"] == 6
        assert summary["total_errors"] == 1
        names = sorted(r["source_name"] for r in summary["source_results"])
        assert names == ["a-docs", "b-missing"]

    def test_describe_source(self, gather, docs_dir):
        source = add_local(gather, docs_dir)
        gather.crawl_source(source.id)

        description = gather.describe_source(source.id)

        assert description["source"]["id"] == source.id
        assert description["source"]["last_crawled"] is not None
        assert description["status"]["status"] == "success"
        assert description["documents_count"] == 6
        assert len(description["recent_documents"]) == 5
        assert set(description["recent_documents"][0]) == {"id", "title", "type", "updated_at"}

    def test_list_sources_with_status(self, gather, docs_dir):
        source = add_local(gather, docs_dir)

        before = gather.list_sources_with_status()
        assert before[0]["status"] == "idle"
        assert before[0]["documents_count"] == 0

        gather.crawl_source(source.id)
        after = gather.list_sources_with_status()
        assert after[0]["status"] == "success"
        assert after[0]["documents_count"] == 6

    def test_stats(self, gather, docs_dir):
        source = add_local(gather, docs_dir)
        gather.crawl_source(source.id)

        stats = gather.stats()

        assert stats["documents"]["total_documents"] == 6
        assert stats["documents"]["documents_by_source"] == {source.id: 6}
        assert stats["search"]["indexed_documents"] == 6
        assert stats["search"]["last_index_update"] is not None


class TestDocuments:
    def test_get_document(self, gather, docs_dir):
        source = add_local(gather, docs_dir)
        gather.crawl_source(source.id)
        doc_id = gather.search(SearchRequest(query="Setup"))[0].document.id

        assert gather.get_document(doc_id).title == "Setup"
        with pytest.raises(NotFoundError, match="Document not found: missing"):
            gather.get_document("missing")

    def test_recent_documents(self, gather, docs_dir):
        source = add_local(gather, docs_dir)
        gather.crawl_source(source.id)

        recent = gather.recent_documents(3)
        assert len(recent) == 3
        assert recent[0].updated_at >= recent[1].updated_at >= recent[2].updated_at

    def test_similar_documents_requires_known_document(self, gather):
        with pytest.raises(NotFoundError):
            gather.similar_documents("missing")


class TestSyncFromDirectory:
    def test_sync_upserts_and_keeps_last_crawled(self, gather, docs_dir, tmp_path):
        sources_dir = tmp_path / "sources"
        sources_dir.mkdir()
        (sources_dir / "team.yaml").write_text(
            f"name: Team docs\nurl: file://{docs_dir}\nfilters:\n  include: ['*.md']\n",
            encoding="utf-8",
        )
        (sources_dir / "broken.yaml").write_text("name: Broken\ntype: local\n", encoding="utf-8")

        synced = gather.sync_sources_from_dir(sources_dir)
        assert [s.id for s in synced] == ["team"]

        gather.crawl_source("team")
        crawled_at = gather.get_source("team").last_crawled
        assert crawled_at is not None

        gather.sync_sources_from_dir(sources_dir)
        assert gather.get_source("team").last_crawled == crawled_at

    def test_sync_without_directory(self, gather):
        assert gather.sync_sources_from_dir() == []


def test_context_manager(tmp_path):
    config = AutoGatherConfig(store=StoreConfig(path=str(tmp_path / "ctx.db")))
    with AutoGather(config) as gather:
        assert gather.list_sources() == []
