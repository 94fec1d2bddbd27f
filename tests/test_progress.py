import logging

import pytest

from spo_manager.core.models import TaskProgress
from spo_manager.core.progress import LoggingProgressSink, SafeProgressSink


@pytest.mark.parametrize(
    "index,total,expected",
    [(0, 0, 0), (1, 3, 33), (2, 3, 66), (3, 3, 100), (5, 0, 0)],
)
def test_percent_complete(index, total, expected):
    assert TaskProgress(index, total, "https://x", "m").percent_complete == expected


def test_progress_snapshot_is_immutable():
    snapshot = TaskProgress(1, 2, "https://x", "m")
    with pytest.raises(AttributeError):
        snapshot.current_index = 2


def test_safe_sink_swallows_and_logs_sink_errors(caplog):
    def broken(progress):
        raise RuntimeError("display gone")

    sink = SafeProgressSink(broken)
    with caplog.at_level(logging.WARNING):
        sink(TaskProgress(1, 1, "https://x", "m"))
    assert "display gone" in caplog.text


def test_safe_sink_without_target_is_noop():
    SafeProgressSink(None)(TaskProgress(1, 1, "https://x", "m"))


def test_logging_sink(caplog):
    with caplog.at_level(logging.INFO, logger="spo_manager.core.progress"):
        LoggingProgressSink()(TaskProgress(2, 4, "https://contoso/sites/a", "Collecting lists"))
    assert "[PROGRESS] Collecting lists: 2/4 (50%)" in caplog.text
