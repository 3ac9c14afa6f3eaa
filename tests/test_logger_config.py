"""Logger setup"""

import logging

from config import settings
from services.logger_config import setup_logging


def test_setup_is_idempotent(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOG_FILE_PATH", str(tmp_path / "logs" / "kbase.log"))

    setup_logging()
    logger = setup_logging()

    assert len(logger.handlers) == 2
    assert (tmp_path / "logs" / "kbase.log").exists()


def test_unknown_level_falls_back_to_info(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOG_FILE_PATH", str(tmp_path / "kbase.log"))
    monkeypatch.setattr(settings, "LOG_LEVEL", "chatty")

    logger = setup_logging()

    assert logger.level == logging.INFO
