from __future__ import annotations

import logging
from pathlib import Path

import pytest

from burstfuse.utils.logging_utils import Measure, configure_logging


def test_configure_logging_writes_file_and_quiets_pillow(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "burstfuse.log"
    configure_logging("debug", log_file)
    try:
        logging.getLogger("burstfuse.test").debug("hello %s", "burst")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "hello burst" in log_file.read_text(encoding="utf-8")
        assert logging.getLogger("PIL").level == logging.WARNING
    finally:
        configure_logging("INFO")


def test_measure_records_elapsed_time_even_on_error(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="burstfuse.utils.logging_utils")

    with Measure("fuse") as m:
        pass
    assert m.elapsed_s >= 0.0
    assert "fuse took" in caplog.text

    with pytest.raises(RuntimeError):
        with Measure("denoise"):
            raise RuntimeError("boom")
    assert "denoise failed after" in caplog.text
