import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from chatcrm.app_logging import init_logging
from fastapi import FastAPI


@pytest.fixture
def clean_loggers(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    loggers = [logging.getLogger("chatcrm"), logging.getLogger("uvicorn.access")]
    levels = [logger.level for logger in loggers]
    for logger in loggers:
        logger.handlers.clear()
    yield loggers
    for logger, level in zip(loggers, levels):
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()


def test_init_logging_attaches_app_to_chatcrm_logger(clean_loggers):
    app_logger, access_logger = clean_loggers

    app = FastAPI()
    init_logging(app)

    assert app.logger is app_logger
    assert any(isinstance(h, TimedRotatingFileHandler) for h in app_logger.handlers)
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)


def test_init_logging_replaces_existing_access_handlers(clean_loggers):
    _, access_logger = clean_loggers
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)


def test_pipeline_records_reach_app_log(clean_loggers, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    app_logger, _ = clean_loggers
    init_logging()

    orchestrator_logger = logging.getLogger("chatcrm.pipeline.orchestrator")
    orchestrator_logger.info("routine turn for contact 12")
    orchestrator_logger.warning("Could not persist conversation context for contact 12")
    for handler in app_logger.handlers:
        handler.flush()

    content = (tmp_path / "app.log").read_text(encoding="utf-8")
    assert "WARNING in chatcrm.pipeline.orchestrator" in content
    assert "Could not persist conversation context for contact 12" in content
    assert "routine turn" not in content
