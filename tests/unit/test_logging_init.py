from __future__ import annotations

import logging
from io import StringIO

from sheetload.logging.init import (
    APP_LOGGER_NAME,
    SUMMARY_LEVEL,
    LabeledFormatter,
    enable_debug,
    get_logger,
    log_summary,
    setup_logging,
)


def _capture(logger: logging.Logger) -> StringIO:
    buf = StringIO()
    handler = logger.handlers[0]
    handler.setStream(buf)
    return buf


def test_setup_logging_creates_logger_with_labeled_formatter():
    logger = setup_logging()
    assert logger.name == APP_LOGGER_NAME
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent():
    assert setup_logging() is setup_logging()
    assert len(get_logger().handlers) == 1


def test_labeled_prefixes():
    logger = setup_logging()
    buf = _capture(logger)
    logger.info("hello")
    logger.warning("careful")
    logger.error("broken")
    log_summary("table=public.t rows=1")
    lines = buf.getvalue().splitlines()
    assert lines == [
        "INFO hello",
        "WARN careful",
        "ERROR broken",
        "SUMMARY table=public.t rows=1",
    ]


def test_module_loggers_reach_the_app_handler():
    logger = setup_logging()
    buf = _capture(logger)
    logging.getLogger("sheetload.services.orchestrator").info("from module")
    assert "INFO from module" in buf.getvalue()


def test_debug_hidden_until_enabled():
    logger = setup_logging()
    buf = _capture(logger)
    logger.debug("quiet")
    assert buf.getvalue() == ""
    enable_debug(logger)
    logger.debug("loud")
    assert "DEBUG loud" in buf.getvalue()


def test_summary_level_between_info_and_warning():
    assert logging.INFO < SUMMARY_LEVEL < logging.WARNING
