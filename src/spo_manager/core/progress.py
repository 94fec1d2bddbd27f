import logging
from typing import Callable, Optional

from .models import TaskProgress

logger = logging.getLogger(__name__)

ProgressSink = Callable[[TaskProgress], None]


class LoggingProgressSink:
    """Writes progress snapshots to the log."""

    def __call__(self, progress: TaskProgress) -> None:
        logger.info(
            "[PROGRESS] %s: %d/%d (%d%%) %s",
            progress.message,
            progress.current_index,
            progress.total_count,
            progress.percent_complete,
            progress.current_site_url,
        )


class SafeProgressSink:
    """Wraps a sink so its failures are logged instead of reaching the crawl."""

    def __init__(self, sink: Optional[ProgressSink]):
        self._sink = sink

    def __call__(self, progress: TaskProgress) -> None:
        if self._sink is None:
            return
        try:
            self._sink(progress)
        except Exception as e:
            logger.warning(f"Progress sink raised {type(e).__name__}: {e}")
