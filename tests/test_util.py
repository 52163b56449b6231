import logging

import pytest

from gfscache.util.http import TimeoutHTTPAdapter, create_session
from gfscache.util.logging import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_splits_errors_into_own_file(tmp_path, restore_root_logger):
    setup_logging(tmp_path / "logs", "INFO")
    log = logging.getLogger("gfscache.test")

    log.info("Downloading 2024030100")
    log.error("Error converting 2024030100")
    for handler in restore_root_logger.handlers:
        handler.flush()

    app_log = (tmp_path / "logs" / "app.log").read_text()
    error_log = (tmp_path / "logs" / "error.log").read_text()
    assert "Downloading 2024030100" in app_log and "Error converting" in app_log
    assert "Downloading" not in error_log
    assert "| ERROR |" in error_log


def test_session_carries_user_agent_and_default_timeout():
    session = create_session("GfsCache/test", timeout=12)
    adapter = session.get_adapter("https://nomads.ncep.noaa.gov/")

    assert session.headers["User-Agent"] == "GfsCache/test"
    assert isinstance(adapter, TimeoutHTTPAdapter)
    assert adapter.timeout == 12
    assert adapter.max_retries.total == 0
