"""
Tests for the grouping backfill script.

Tests cover:
- Reset by default, --no-reset keeps existing groups
- Paging, skipping posts without terms
- Per-post failures counted without aborting
- Exit codes for missing tables and initialization errors
"""

import importlib.util
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from src.grouping.constants import NARRATIVE, TOPIC
from src.grouping.errors import SetupError
from src.grouping.orchestrator import GroupingService

SCRIPT_PATH = Path(__file__).parent.parent.parent / 'scripts' / 'backfill_groups.py'


@pytest.fixture(scope='module')
def backfill():
    """Import scripts/backfill_groups.py as a module."""
    spec = importlib.util.spec_from_file_location('backfill_groups', SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


# ============================================================================
# TEST: run_backfill
# ============================================================================

@pytest.mark.integration
class TestRunBackfill:

    def test_groups_all_posts(self, backfill, store):
        store.add_post('p1', topics=['Fraud'])
        store.add_post('p2', topics=['fraud'])
        store.add_post('p3', configuration_id='tenant-b', topics=['Fraud'])

        stats = backfill.run_backfill(store, GroupingService(store), batch_size=2)

        assert stats.processed == 3
        assert stats.failed == 0
        assert stats.pages == 2
        assert len(store.clusters_for(TOPIC, 'tenant-a')) == 1
        assert len(store.clusters_for(TOPIC, 'tenant-b')) == 1
        assert len(store.clusters[NARRATIVE]) == 2

    def test_reset_by_default(self, backfill, store):
        stale = store.add_cluster(TOPIC, 'tenant-a', 'Stale', topics=['old'])
        store.add_post('p1', topics=['Fraud'])

        backfill.run_backfill(store, GroupingService(store))

        assert stale not in {c['id'] for c in store.clusters[TOPIC]}

    def test_no_reset_keeps_groups(self, backfill, store):
        existing = store.add_cluster(TOPIC, 'tenant-a', 'Fraud', topics=['Fraud'])
        store.add_post('p1', topics=['Fraud'])

        backfill.run_backfill(store, GroupingService(store), reset=False)

        assert len(store.clusters[TOPIC]) == 1
        assert len(store.members(TOPIC, existing)) == 1

    def test_skips_posts_without_terms(self, backfill, store):
        store.add_post('p1', topics=['Fraud'])
        store.add_post('p2')

        stats = backfill.run_backfill(store, GroupingService(store))

        assert stats.processed == 1
        assert stats.skipped == 1

    def test_blank_and_punctuation_terms_count_as_skipped(self, backfill, store):
        store.add_post('p1', topics=['Fraud'])
        store.add_post('p2', topics=['  '], keywords=['!!!'])

        stats = backfill.run_backfill(store, GroupingService(store))

        assert stats.processed == 1
        assert stats.skipped == 1

    def test_concurrency_capped_at_pool_size(self, backfill, store):
        store.max_connections = 3
        store.add_post('p1', topics=['Fraud'])

        with patch.object(backfill, 'ThreadPoolExecutor', wraps=ThreadPoolExecutor) as executor_cls:
            stats = backfill.run_backfill(store, GroupingService(store), concurrency=16)

        assert executor_cls.call_args.kwargs['max_workers'] == 3
        assert stats.processed == 1
        assert stats.failed == 0

    def test_concurrency_below_pool_size_unchanged(self, backfill, store):
        with patch.object(backfill, 'ThreadPoolExecutor', wraps=ThreadPoolExecutor) as executor_cls:
            backfill.run_backfill(store, GroupingService(store), concurrency=2)

        assert executor_cls.call_args.kwargs['max_workers'] == 2

    def test_tenant_filter(self, backfill, store):
        store.add_post('p1', topics=['Fraud'])
        store.add_post('p2', configuration_id='tenant-b', topics=['Fraud'])

        stats = backfill.run_backfill(store, GroupingService(store), configuration_id='tenant-b')

        assert stats.processed == 1
        assert store.clusters_for(TOPIC, 'tenant-a') == []

    def test_failures_counted_and_run_continues(self, backfill, store):
        store.add_post('p1', topics=['Fraud'])
        store.add_post('p2', topics=['Voting'])
        grouping = GroupingService(store)
        original = grouping.group_post

        def flaky(post_id, configuration_id):
            if post_id == 'p1':
                raise RuntimeError("boom")
            return original(post_id, configuration_id)

        grouping.group_post = flaky

        stats = backfill.run_backfill(store, grouping)

        assert stats.processed == 2
        assert stats.failed == 1
        assert len(store.clusters[TOPIC]) == 1

    def test_missing_tables_raise(self, backfill, store):
        store.missing_tables = ['topic_posts']

        with pytest.raises(SetupError) as exc_info:
            backfill.run_backfill(store, GroupingService(store))

        assert 'topic_posts' in str(exc_info.value)


# ============================================================================
# TEST: CLI
# ============================================================================

@pytest.mark.unit
class TestMain:

    def test_missing_tables_exit_code(self, backfill):
        db = MagicMock()
        db.missing_grouping_tables.return_value = ['topics']

        with patch.object(backfill, 'DatabaseManager', return_value=db):
            assert backfill.main([]) == 1

        db.reset_groups.assert_not_called()
        db.close.assert_called_once()

    def test_init_failure_exit_code(self, backfill):
        with patch.object(backfill, 'DatabaseManager', side_effect=RuntimeError("no database")):
            assert backfill.main(['--no-reset']) == 1

    def test_success_with_options(self, backfill, store):
        store.add_post('p1', topics=['Fraud'])
        store.close = MagicMock()

        with patch.object(backfill, 'DatabaseManager', return_value=store):
            assert backfill.main(['--no-reset', '--batch', '10', '--concurrency', '2']) == 0

        assert len(store.clusters[TOPIC]) == 1
        store.close.assert_called_once()

    def test_init_schema_flag(self, backfill):
        db = MagicMock()
        db.missing_grouping_tables.return_value = []
        db.get_posts_page.return_value = []
        db.max_connections = 10

        with patch.object(backfill, 'DatabaseManager', return_value=db):
            assert backfill.main(['--init-schema']) == 0

        db.init_db.assert_called_once()
        db.reset_groups.assert_called_once_with(None)

    def test_invalid_batch_size(self, backfill):
        with pytest.raises(SystemExit):
            backfill.main(['--batch', '0'])
