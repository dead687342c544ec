from unittest.mock import patch

import pytest

from canvas_sandbox.progress import GlobalLog, ProgressReporter


def test_global_log_keeps_most_recent_entries() -> None:
    log = GlobalLog()
    for i in range(600):
        log.append(f"line {i}")

    assert len(log) == 500
    entries = log.tail()
    assert entries[0] == "line 100"
    assert entries[-1] == "line 599"


def test_tail_limits() -> None:
    log = GlobalLog(capacity=3)
    for line in ["a", "b", "c", "d"]:
        log.append(line)
    assert log.tail(2) == ["c", "d"]
    assert log.tail(10) == ["b", "c", "d"]
    assert log.tail(0) == []


def test_clear() -> None:
    log = GlobalLog()
    log.append("x")
    log.clear()
    assert len(log) == 0


def test_invalid_capacity() -> None:
    with pytest.raises(ValueError):
        GlobalLog(capacity=0)


def test_reporter_records_steps_and_logs() -> None:
    log = GlobalLog()
    progress = ProgressReporter(log)

    with patch("canvas_sandbox.progress.logger") as mock_logger:
        progress.report("✅ Sandbox created", "[sandbox] ✅ Sandbox created")
        progress.report("📦 Installing dependencies...")
        mock_logger.info.assert_any_call("[sandbox] ✅ Sandbox created")

    assert progress.setup_steps == ["✅ Sandbox created", "📦 Installing dependencies..."]
    assert log.tail() == ["[sandbox] ✅ Sandbox created", "📦 Installing dependencies..."]
    assert progress.render_setup_summary() == "- ✅ Sandbox created\n- 📦 Installing dependencies..."
    assert progress.tail_logs(1) == ["📦 Installing dependencies..."]
