import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .exceptions import MaxRetriesExceededError, SharePointAPIError

logger = logging.getLogger(__name__)

THROTTLE_STATUS_CODES = (429, 503)


@dataclass
class RetryConfig:
    max_attempts: int = 5
    # Backoff schedule in seconds, indexed by attempt; the last value repeats.
    throttle_delays: List[float] = field(default_factory=lambda: [2, 4, 8, 16, 32, 60, 120])
    max_retry_after: float = 300.0
    request_timeout: float = 120.0


class RetryStrategy:
    """Retries throttled SharePoint calls, honoring Retry-After.

    Only throttling responses are retried. Any other failure is returned to
    the caller on the first attempt.
    """

    def __init__(self, config: Optional[RetryConfig] = None) -> None:
        self.config = config or RetryConfig()

    async def execute_with_retry(self, operation_id: str, func: Callable, *args, **kwargs) -> Any:
        attempt = 0
        last_error: Exception | None = None

        while attempt < self.config.max_attempts:
            logger.debug(f"[RETRY] Attempt {attempt + 1}/{self.config.max_attempts} for {operation_id}")
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs),
                    timeout=self.config.request_timeout
                )
            except SharePointAPIError as exc:
                if not self._is_throttled(exc):
                    raise
                last_error = exc
                if attempt >= self.config.max_attempts - 1:
                    break

                delay = self._calculate_delay(attempt, exc.retry_after)
                logger.warning(
                    f"[RETRY] {operation_id} throttled (HTTP {exc.status_code}), waiting {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1

        logger.error(f"[RETRY] Giving up on {operation_id} after {self.config.max_attempts} attempts")
        raise MaxRetriesExceededError(
            f"Max retries exceeded for {operation_id}: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )

    def _is_throttled(self, error: SharePointAPIError) -> bool:
        return error.status_code in THROTTLE_STATUS_CODES

    def _calculate_delay(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(max(float(retry_after), 0.0), self.config.max_retry_after)
        delays = self.config.throttle_delays
        base = delays[min(attempt, len(delays) - 1)]
        return base + random.uniform(0, base * 0.1)
