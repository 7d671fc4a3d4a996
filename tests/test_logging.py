from __future__ import annotations

import json
import logging
from pathlib import Path

from fryler.logging_setup import ContextFormatter, _rotated_name, configure_logging


def test_formatter_renders_extra_context() -> None:
    record = logging.LogRecord("fryler.test", logging.INFO, __file__, 1, "task #%s done", (4,), None)
    record.task_id = 4
    record.cost_usd = 0.5

    line = ContextFormatter().format(record)

    prefix, _, context = line.partition(" fryler.test: task #4 done ")
    assert prefix.startswith("[") and prefix.endswith("] [INFO]")
    assert json.loads(context) == {"task_id": 4, "cost_usd": 0.5}


def test_formatter_without_extra_has_no_json() -> None:
    record = logging.LogRecord("fryler", logging.WARNING, __file__, 1, "plain", None, None)
    assert ContextFormatter().format(record).endswith("[WARNING] fryler: plain")


def test_configure_logging_writes_file(tmp_path: Path) -> None:
    log_path = configure_logging(tmp_path / "logs", level="debug", quiet=True)
    logger = logging.getLogger("fryler.sample")

    logger.debug("hello %s", "world", extra={"k": "v"})
    for handler in logging.getLogger("fryler").handlers:
        handler.flush()

    text = log_path.read_text(encoding="utf-8")
    assert "[DEBUG] fryler.sample: hello world" in text
    assert '{"k": "v"}' in text
    assert len(logging.getLogger("fryler").handlers) == 1

    configure_logging(tmp_path / "logs", level="info", quiet=True)
    assert len(logging.getLogger("fryler").handlers) == 1
    assert logging.getLogger("fryler").level == logging.INFO


def test_rotated_files_keep_log_extension() -> None:
    assert _rotated_name("/x/logs/fryler.log.2026-01-31") == "/x/logs/fryler-2026-01-31.log"
