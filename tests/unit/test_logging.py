"""Unit tests for structured JSON logging."""

from __future__ import annotations

import json
import logging

import pytest

from human_farm_service.logging import (
    SERVICE_LOGGER_NAME,
    JSONFormatter,
    get_logger,
    setup_logging,
)


@pytest.mark.unit
def test_get_logger_namespaces_names() -> None:
    """Loggers live under the service namespace."""
    assert get_logger("human_farm_service.services.x").name == "human_farm_service.services.x"
    assert get_logger("other").name == f"{SERVICE_LOGGER_NAME}.other"


@pytest.mark.unit
def test_formatter_emits_json_with_extra() -> None:
    """Extra fields are nested under "extra"."""
    record = logging.LogRecord(
        name="human_farm_service.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Task created",
        args=(),
        exc_info=None,
    )
    record.task_id = "t-1"

    payload = json.loads(JSONFormatter().format(record))
    assert payload["level"] == "INFO"
    assert payload["message"] == "Task created"
    assert payload["extra"] == {"task_id": "t-1"}


@pytest.mark.unit
def test_setup_logging_rejects_unknown_level(tmp_path) -> None:
    """Invalid levels fail fast."""
    with pytest.raises(ValueError, match="Invalid log level"):
        setup_logging("LOUD", str(tmp_path))


@pytest.mark.unit
def test_setup_logging_writes_daily_file(tmp_path) -> None:
    """Records reach a YYYY-MM-DD.log file in the configured directory."""
    logger = setup_logging("INFO", str(tmp_path / "logs"))
    get_logger("test").info("hello", extra={"k": "v"})
    for handler in logger.handlers:
        handler.flush()

    files = list((tmp_path / "logs").glob("*.log"))
    assert len(files) == 1
    line = files[0].read_text().strip().splitlines()[-1]
    assert json.loads(line)["extra"] == {"k": "v"}

    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
