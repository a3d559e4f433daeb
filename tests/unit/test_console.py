from __future__ import annotations

import io
import logging

from common.checks import CheckReport
from common.console import SUCCESS, ColorFormatter, setup_logging, success


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord("t", level, __file__, 1, msg, (), None)


def test_plain_tags_without_color():
    fmt = ColorFormatter(color=False)
    assert fmt.format(_record(logging.INFO, "Uploading")) == "[INFO] Uploading"
    assert fmt.format(_record(logging.WARNING, "careful")) == "[WARN] careful"
    assert fmt.format(_record(SUCCESS, "done")) == "[SUCCESS] done"


def test_color_wraps_only_the_tag():
    line = ColorFormatter(color=True).format(_record(logging.ERROR, "boom"))
    assert line.startswith("\033[0;31m[ERROR]\033[0m")
    assert line.endswith(" boom")


def test_setup_logging_replaces_previous_handler_and_skips_color_off_tty():
    first, second = io.StringIO(), io.StringIO()
    setup_logging(stream=first)
    setup_logging(stream=second)
    success(logging.getLogger("pipeline.test"), "Uploaded %d files", 3)

    assert first.getvalue() == ""
    assert second.getvalue() == "[SUCCESS] Uploaded 3 files\n"
    assert sum(1 for h in logging.getLogger().handlers if h.get_name() == "pipeline-console") == 1


def test_check_report_counts_and_lines(caplog):
    caplog.set_level(logging.INFO)
    report = CheckReport(logger=logging.getLogger("pipeline.checks"))
    report.passed("pod found", "/usr/local/bin/pod")
    report.warn("Settings file not found")
    assert report.ok and report.exit_code == 0

    report.fail("Multiple sources found", "a; b")
    assert report.exit_code == 1
    assert report.results[0].line() == "✅ pod found: /usr/local/bin/pod"
    assert report.failures[0].line() == "❌ Multiple sources found: a; b"
    assert [r.levelname for r in caplog.records] == ["SUCCESS", "WARNING", "ERROR"]
