"""Tests for the local source crawler."""

import os
import sqlite3
import sys
import time
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from indexer.source_schema import CrawlStatus, DocumentType, SourceConfig, SourceFilters, SourceType
from pipelines.crawler import SourceCrawler, matches_glob, should_process
from pipelines.extractors import DocumentExtractor
from services.shared.errors import ExtractionError
from services.shared.incremental import make_document_id
from conftest import make_source


@pytest.fixture
def crawler(store):
    return SourceCrawler(store)


def doc_id(source, path):
    return make_document_id(source.id, str(path))


class TestGlobFilters:
    def test_matching_is_case_insensitive(self):
        assert matches_glob("Docs/README.MD", "*.md")
        assert matches_glob("drafts/wip.md", "drafts/**")
        assert not matches_glob("drafts", "drafts/**")
        assert matches_glob("a1.txt", "a?.txt")

    def test_include_and_exclude(self):
        filters = SourceFilters(include=["*.md"], exclude=["drafts/**"])
        assert should_process("guide.md", filters)
        assert not should_process("notes.txt", filters)
        assert not should_process("drafts/wip.md", filters)
        assert should_process("anything", SourceFilters())


class TestLocalCrawl:
    def test_markdown_scenario(self, crawler, store, docs_dir):
        source = make_source(docs_dir, "s1", include=["guide.md"])
        store.save_source(source)

        result = crawler.run(source)

        assert result.status == CrawlStatus.SUCCESS
        assert result.processed == 1
        doc = store.get_document(doc_id(source, docs_dir / "guide.md"))
        assert doc.title == "Setup"
        assert doc.tags == ["setup"]
        assert doc.type == DocumentType.MARKDOWN
        assert "Run npm install" in doc.content

    def test_crawls_supported_files(self, crawler, store, docs_dir):
        source = make_source(docs_dir)
        store.save_source(source)

        result = crawler.run(source)

        # guide, notes, api, page, drafts/wip, nested/deep/inner; the png is skipped
        assert result.found == 6
        assert result.processed == 6
        assert result.skipped == 1
        assert result.errors == []
        assert store.get_document(doc_id(source, docs_dir / "image.png")) is None
        assert store.count_documents("s1") == 6

    def test_second_run_skips_everything(self, crawler, store, docs_dir):
        source = make_source(docs_dir)
        store.save_source(source)
        crawler.run(source)

        second = crawler.run(source)

        assert second.processed == 0
        assert second.found == 6
        # every candidate plus the unsupported png
        assert second.skipped == second.found + 1

    def test_changed_file_is_reprocessed(self, crawler, store, docs_dir):
        source = make_source(docs_dir, include=["*.txt"])
        store.save_source(source)
        crawler.run(source)

        path = docs_dir / "notes.txt"
        before = store.get_document(doc_id(source, path))

        path.write_text("Release notes\nVersion 3 drops caching.\n", encoding="utf-8")
        later = time.time() + 5
        os.utime(path, (later, later))

        result = crawler.run(source)
        after = store.get_document(doc_id(source, path))

        assert result.processed == 1
        assert after.id == before.id
        assert after.checksum != before.checksum
        assert "Version 3" in after.content

    def test_change_with_older_mtime_is_skipped(self, crawler, store, docs_dir):
        source = make_source(docs_dir, include=["*.txt"])
        store.save_source(source)
        crawler.run(source)

        path = docs_dir / "notes.txt"
        before = store.get_document(doc_id(source, path))

        path.write_text("Completely different bytes\n", encoding="utf-8")
        earlier = time.time() - 3600
        os.utime(path, (earlier, earlier))

        result = crawler.run(source)

        assert result.processed == 0
        assert store.get_document(doc_id(source, path)).checksum == before.checksum

    def test_size_filter(self, crawler, store, tmp_path):
        root = tmp_path / "big"
        root.mkdir()
        (root / "large.txt").write_bytes(b"x" * 2048)
        (root / "small.txt").write_bytes(b"y" * 100)
        source = make_source(root, max_size=1024)
        store.save_source(source)

        result = crawler.run(source)

        assert result.skipped == 1
        assert result.processed == 1
        assert store.get_document(doc_id(source, root / "large.txt")) is None
        assert store.get_document(doc_id(source, root / "small.txt")) is not None

    def test_include_filter_never_reaches_extractor(self, store, docs_dir):
        extractor = DocumentExtractor()
        crawler = SourceCrawler(store, extractor)
        source = make_source(docs_dir, include=["*.md"])
        store.save_source(source)

        with patch.object(extractor, "extract", wraps=extractor.extract) as spy:
            result = crawler.run(source)

        extracted = [call.args[1] for call in spy.call_args_list]
        assert extracted == [str(docs_dir / "guide.md")]
        # api.json, drafts/, image.png, nested/, notes.txt, page.html
        assert result.skipped == 6

    def test_exclude_wins_over_include(self, crawler, store, docs_dir):
        source = make_source(docs_dir, include=["*.md", "drafts"], exclude=["drafts/**"])
        store.save_source(source)

        crawler.run(source)

        assert store.get_document(doc_id(source, docs_dir / "guide.md")) is not None
        assert store.get_document(doc_id(source, docs_dir / "drafts" / "wip.md")) is None

    def test_max_depth(self, crawler, store, docs_dir):
        source = make_source(docs_dir, max_depth=2)
        store.save_source(source)

        crawler.run(source)

        assert store.get_document(doc_id(source, docs_dir / "drafts" / "wip.md")) is not None
        assert store.get_document(doc_id(source, docs_dir / "nested" / "deep" / "inner.md")) is None

    def test_per_file_errors_do_not_abort(self, store, docs_dir):
        extractor = DocumentExtractor()
        crawler = SourceCrawler(store, extractor)
        source = make_source(docs_dir, include=["*.md", "*.txt"])
        store.save_source(source)

        real_extract = extractor.extract

        def flaky(raw, path, source_id, stat=None):
            if path.endswith(".txt"):
                raise ExtractionError(path, "unreadable")
            return real_extract(raw, path, source_id, stat=stat)

        with patch.object(extractor, "extract", side_effect=flaky):
            result = crawler.run(source)

        assert result.status == CrawlStatus.SUCCESS
        assert result.processed == 1
        assert len(result.errors) == 1
        assert "notes.txt" in result.errors[0]
        assert store.get_source_status("s1").status == CrawlStatus.SUCCESS

    def test_date_keyed_front_matter_does_not_stop_the_crawl(self, crawler, store, tmp_path):
        root = tmp_path / "dated"
        root.mkdir()
        (root / "changelog.md").write_text(
            "---\ntitle: Changelog\n2024-01-15: first release\n---\n# Changelog\n", encoding="utf-8"
        )
        (root / "readme.txt").write_text("Readme\nStart here.\n", encoding="utf-8")
        source = make_source(root)
        store.save_source(source)

        result = crawler.run(source)

        assert result.status == CrawlStatus.SUCCESS
        assert result.processed == 2
        assert result.errors == []
        doc = store.get_document(doc_id(source, root / "changelog.md"))
        assert doc.metadata["frontmatter"]["2024-01-15"] == "first release"

    def test_unexpected_extractor_failure_is_recorded(self, store, docs_dir):
        extractor = DocumentExtractor()
        crawler = SourceCrawler(store, extractor)
        source = make_source(docs_dir, include=["*.md", "*.txt"])
        store.save_source(source)

        real_extract = extractor.extract

        def broken(raw, path, source_id, stat=None):
            if path.endswith(".txt"):
                raise RuntimeError("handler bug")
            return real_extract(raw, path, source_id, stat=stat)

        with patch.object(extractor, "extract", side_effect=broken):
            result = crawler.run(source)

        assert result.status == CrawlStatus.SUCCESS
        assert result.processed == 1
        assert result.errors == [f"Error processing file {docs_dir / 'notes.txt'}: handler bug"]

    def test_unserializable_document_is_skipped(self, crawler, store, docs_dir):
        source = make_source(docs_dir, include=["*.md", "*.txt"])
        store.save_source(source)

        real_save = store.save_document

        def save(document):
            if document.source_path.endswith(".txt"):
                raise TypeError("keys must be str, int, float, bool or None, not date")
            return real_save(document)

        with patch.object(store, "save_document", side_effect=save):
            result = crawler.run(source)

        assert result.status == CrawlStatus.SUCCESS
        assert result.processed == 1
        assert len(result.errors) == 1
        assert "notes.txt" in result.errors[0]
        assert store.get_source_status("s1").status == CrawlStatus.SUCCESS


class TestRunStatus:
    def test_success_records_status_and_last_crawled(self, crawler, store, docs_dir):
        source = make_source(docs_dir)
        store.save_source(source)

        result = crawler.run(source)

        status = store.get_source_status("s1")
        assert status.status == CrawlStatus.SUCCESS
        assert status.documents_found == result.found
        assert status.documents_processed == result.processed
        assert status.documents_skipped == result.skipped
        assert status.duration is not None and status.duration >= 0
        assert status.last_error is None
        assert store.get_source("s1").last_crawled is not None

    def test_missing_root_is_fatal(self, crawler, store, tmp_path):
        source = make_source(tmp_path / "does-not-exist")
        store.save_source(source)

        result = crawler.run(source)

        assert result.status == CrawlStatus.ERROR
        assert result.found == 0
        assert len(result.errors) == 1
        status = store.get_source_status("s1")
        assert status.status == CrawlStatus.ERROR
        assert "Cannot access path" in status.last_error
        assert store.get_source("s1").last_crawled is None

    def test_file_root_is_fatal(self, crawler, store, docs_dir):
        source = make_source(docs_dir / "guide.md")
        store.save_source(source)

        assert crawler.run(source).status == CrawlStatus.ERROR

    @pytest.mark.parametrize("source_type", [SourceType.GIT, SourceType.WEB, SourceType.API])
    def test_remote_types_not_implemented(self, crawler, store, source_type):
        source = SourceConfig(id="remote", name="remote", type=source_type, url="https://example.com/repo")
        store.save_source(source)

        result = crawler.run(source)

        assert result.status == CrawlStatus.ERROR
        assert "not yet implemented" in result.errors[0]
        assert store.get_source_status("remote").status == CrawlStatus.ERROR

    def test_failed_crawl_keeps_existing_documents(self, crawler, store, docs_dir, tmp_path):
        source = make_source(docs_dir)
        store.save_source(source)
        crawler.run(source)

        docs_dir.rename(tmp_path / "moved")
        result = crawler.run(source)

        assert result.status == CrawlStatus.ERROR
        assert store.count_documents("s1") == 6

    def test_unexpected_failure_is_recorded_not_left_crawling(self, crawler, store, docs_dir):
        source = make_source(docs_dir)
        store.save_source(source)

        with patch.object(crawler, "_crawl_local", side_effect=RuntimeError("walk exploded")):
            result = crawler.run(source)

        assert result.status == CrawlStatus.ERROR
        status = store.get_source_status("s1")
        assert status.status == CrawlStatus.ERROR
        assert "walk exploded" in status.last_error
        assert status.duration is not None

    def test_store_failure_mid_crawl_ends_in_error(self, crawler, store, docs_dir):
        source = make_source(docs_dir, include=["*.md"])
        store.save_source(source)

        with patch.object(store, "save_document", side_effect=sqlite3.OperationalError("disk I/O error")):
            result = crawler.run(source)

        assert result.status == CrawlStatus.ERROR
        assert store.get_source_status("s1").status == CrawlStatus.ERROR
        assert store.get_source("s1").last_crawled is None


def test_run_all_enabled(crawler, store, docs_dir, tmp_path):
    store.save_source(make_source(docs_dir, "good", name="a-good", include=["*.md"]))
    store.save_source(make_source(tmp_path / "missing", "bad", name="b-bad"))
    store.save_source(make_source(docs_dir, "off", name="c-off", enabled=False))

    results = crawler.run_all_enabled()

    assert set(results) == {"good", "bad"}
    assert results["good"].status == CrawlStatus.SUCCESS
    assert results["bad"].status == CrawlStatus.ERROR
    assert store.get_source_status("off") is None


def test_run_all_enabled_survives_unexpected_failure(crawler, store, docs_dir):
    store.save_source(make_source(docs_dir, "first", name="a-first", include=["*.md"]))
    store.save_source(make_source(docs_dir, "second", name="b-second", include=["*.txt"]))

    real_crawl = crawler._crawl_local

    def crawl(source, result):
        if source.id == "first":
            raise RuntimeError("unexpected")
        return real_crawl(source, result)

    with patch.object(crawler, "_crawl_local", side_effect=crawl):
        results = crawler.run_all_enabled()

    assert results["first"].status == CrawlStatus.ERROR
    assert results["second"].status == CrawlStatus.SUCCESS
    assert results["second"].processed == 1
    assert all(
        store.get_source_status(sid).status != CrawlStatus.CRAWLING for sid in ("first", "second")
    )
