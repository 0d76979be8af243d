"""
Background queue for personalization learning.
Each request becomes a one-off APScheduler job; a failed run is re-queued
with exponential backoff until the attempt budget is spent.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from habit_engine.constants import (
    LEARNING_MAX_ATTEMPTS, LEARNING_BASE_DELAY_SECONDS, LEARNING_MAX_DELAY_SECONDS
)

logger = logging.getLogger("habit_engine.learning")


class LearningQueue:
    """Runs `job(user_id)` off the request path with retries"""

    def __init__(
        self,
        job: Callable[[str], Any],
        scheduler,
        max_attempts: int = LEARNING_MAX_ATTEMPTS,
        base_delay: float = LEARNING_BASE_DELAY_SECONDS,
        max_delay: float = LEARNING_MAX_DELAY_SECONDS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.job = job
        self.scheduler = scheduler
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock or datetime.now

    def enqueue(self, user_id: str, attempt: int = 1, delay: float = 0.0) -> None:
        """
        Queue a learning run for the user.

        A pending run for the same user is replaced, so bursts of completions
        collapse into one run.
        """
        run_date = self._clock() + timedelta(seconds=delay)
        self.scheduler.add_job(
            self.run,
            trigger="date",
            run_date=run_date,
            args=[user_id, attempt],
            id=f"learning:{user_id}",
            replace_existing=True
        )
        logger.debug(f"Queued learning for user {user_id} (attempt {attempt}) at {run_date}")

    def run(self, user_id: str, attempt: int = 1) -> None:
        try:
            self.job(user_id)
        except Exception as e:
            if attempt >= self.max_attempts:
                logger.error(
                    f"Learning for user {user_id} failed after {attempt} attempt(s), dropping: {e}"
                )
                return

            delay = self.retry_delay(attempt)
            logger.warning(
                f"Learning for user {user_id} failed (attempt {attempt}), retrying in {delay:.0f}s: {e}"
            )
            self.enqueue(user_id, attempt + 1, delay)

    def retry_delay(self, attempt: int) -> float:
        """Backoff before the attempt after `attempt`"""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
