from __future__ import annotations

import logging
from io import StringIO

from surveillance_monitor.utils.logging import current_run_id, init_logger, run_context


def test_run_context_adds_run_id_to_log_records() -> None:
    logger = init_logger("survmon.test.logging")

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(run_id)s|%(message)s"))
    logger.addHandler(handler)

    with run_context(logger, run_id="run-123") as run_id:
        assert current_run_id() == "run-123"
        logger.info("baseline estimated")

    output_lines = [line for line in stream.getvalue().splitlines() if line]
    assert output_lines == ["run-123|baseline estimated"]
    assert run_id == "run-123"
    assert current_run_id() is None

    stream.truncate(0)
    stream.seek(0)

    logger.info("outside context")
    outside_lines = [line for line in stream.getvalue().splitlines() if line]
    assert outside_lines == ["-|outside context"]

    logger.removeHandler(handler)
    handler.close()


def test_generated_run_ids_are_unique() -> None:
    logger = init_logger("survmon.test.ids")

    with run_context(logger) as first:
        pass
    with run_context(logger) as second:
        pass

    assert first != second
    assert len(first) == 12


def test_init_logger_accepts_level_names() -> None:
    logger = init_logger("survmon.test.levels", "debug")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    init_logger("survmon.test.levels", "WARNING")
    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
