"""
Tests for the setup checker script.
"""

import importlib.util
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

SCRIPT_PATH = Path(__file__).parent.parent.parent / 'scripts' / 'check_setup.py'


@pytest.fixture(scope='module')
def check_setup():
    """Import scripts/check_setup.py as a module."""
    spec = importlib.util.spec_from_file_location('check_setup', SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.unit
def test_grouping_tables_present(check_setup):
    db = MagicMock()
    db.missing_grouping_tables.return_value = []

    with patch('src.storage.database.DatabaseManager', return_value=db):
        assert check_setup.check_grouping_tables() is True

    db.close.assert_called_once()


@pytest.mark.unit
def test_grouping_tables_missing(check_setup, capsys):
    db = MagicMock()
    db.missing_grouping_tables.return_value = ['narratives', 'narrative_posts']

    with patch('src.storage.database.DatabaseManager', return_value=db):
        assert check_setup.check_grouping_tables() is False

    output = capsys.readouterr().out
    assert 'narratives, narrative_posts' in output
    assert '--init-schema' in output


@pytest.mark.unit
def test_database_unreachable(check_setup):
    with patch('src.storage.database.DatabaseManager', side_effect=RuntimeError("connection refused")):
        assert check_setup.check_database_connection() is False


@pytest.mark.unit
def test_posts_available(check_setup):
    db = MagicMock()
    db.get_posts_page.return_value = [{'id': 'p1'}]

    with patch('src.storage.database.DatabaseManager', return_value=db):
        assert check_setup.check_posts_available() is True

    db.get_posts_page.assert_called_once_with(offset=0, limit=1)


@pytest.mark.unit
def test_main_reports_failures(check_setup):
    with patch.object(check_setup, 'check_python_version', return_value=True), \
         patch.object(check_setup, 'check_environment_file', return_value=False), \
         patch.object(check_setup, 'check_database_connection', return_value=True), \
         patch.object(check_setup, 'check_grouping_tables', return_value=True), \
         patch.object(check_setup, 'check_posts_available', return_value=True):
        assert check_setup.main() == 1
