import logging
from pathlib import Path

from protonverbs.foundation.logging_utils import close_logger, setup_operational_logger


def test_operational_log_file_receives_debug_records(tmp_path: Path):
    logger, log_file = setup_operational_logger(str(tmp_path / "logs"), "unit_run")
    try:
        logger.debug("Copying base image → prefix")
        logger.info("Prefix ready")
    finally:
        close_logger(logger)

    content = Path(log_file).read_text(encoding="utf-8")
    assert Path(log_file).name == "unit_run_oplog.log"
    assert "| DEBUG | Copying base image → prefix" in content
    assert "| INFO | Prefix ready" in content
    assert logger.handlers == []


def test_console_only_logger_has_no_file(tmp_path: Path):
    logger, log_file = setup_operational_logger(None, "console_only", verbose=True)
    try:
        assert log_file is None
        assert not logger.propagate
        assert [h.level for h in logger.handlers] == [logging.DEBUG]
    finally:
        close_logger(logger)
