from __future__ import annotations

import logging
from pathlib import Path

from charucocalib.log import setup_logging


def test_setup_logging_levels_and_file(tmp_path: Path) -> None:
    log_file = tmp_path / "run.log"
    logger = setup_logging(verbose=True, log_file=str(log_file))
    try:
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2

        logging.getLogger("charucocalib.calib.stages").debug("hello %d", 7)
        for h in logger.handlers:
            h.flush()
        assert "charucocalib.calib.stages - DEBUG - hello 7" in log_file.read_text(encoding="utf-8")

        logger = setup_logging()
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
    finally:
        for h in list(logger.handlers):
            h.close()
            logger.removeHandler(h)
