import logging
from pathlib import Path

import pytest

from inventory_suite.logging import ROOT_LOGGER, configure_logging, get_logger, parse_level


@pytest.fixture(autouse=True)
def _restore_logging(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)
    yield
    configure_logging(log_file="")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("debug", logging.DEBUG),
        (" WARN ", logging.WARNING),
        ("error", logging.ERROR),
        ("15", 15),
        (logging.CRITICAL, logging.CRITICAL),
        ("", logging.INFO),
        (None, logging.INFO),
        ("chatty", logging.INFO),
    ],
)
def test_parse_level(value, expected):
    assert parse_level(value) == expected


def test_module_loggers_share_the_parent_handlers(tmp_path: Path, monkeypatch) -> None:
    log_file = tmp_path / "inventory.log"
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setenv("LOG_FILE", str(log_file))
    configure_logging()

    log = get_logger("inventory-test")
    log.info("hidden")
    log.warning("rate %s rejected", "abc")
    configure_logging()

    root = logging.getLogger(ROOT_LOGGER)
    assert log.name == "inventory.inventory-test"
    assert not log.handlers
    assert len(root.handlers) == 2
    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("[inventory.inventory-test] WARNING: rate abc rejected")


def test_unwritable_log_file_falls_back_to_console(tmp_path: Path) -> None:
    root = configure_logging("info", log_file=str(tmp_path / "missing" / "app.log"))
    assert [type(h) for h in root.handlers] == [logging.StreamHandler]
