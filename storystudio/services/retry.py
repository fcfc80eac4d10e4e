"""
Retry with exponential backoff as an explicit state machine.

    READY --call--> SUCCEEDED
    READY --retryable error, attempts left--> WAITING --sleep--> READY
    READY --retryable error, no attempts left--> EXHAUSTED (error raised)
    READY --any other error--> ABORTED (error raised immediately)
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from storystudio.config import GenerationConfig
from storystudio.providers.exceptions import TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[None]]


class RetryPhase(str, Enum):
    READY = "ready"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientServiceError,)

    @classmethod
    def from_config(cls, config: GenerationConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            multiplier=config.retry_multiplier,
            max_delay=config.retry_max_delay,
            jitter=config.retry_jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


@dataclass
class RetryState:
    attempt: int = 0
    phase: RetryPhase = RetryPhase.READY
    last_error: Optional[BaseException] = None
    delays: List[float] = field(default_factory=list)

    @property
    def last_error_class(self) -> Optional[str]:
        return type(self.last_error).__name__ if self.last_error else None


class Retrier:
    """
    Runs an async operation under a RetryPolicy.

    `sleep` is injectable so tests can run without real delays.
    """

    def __init__(self, policy: RetryPolicy, sleep: Optional[SleepFunc] = None, label: str = "retry"):
        self.policy = policy
        self.sleep = sleep or asyncio.sleep
        self.label = label

    async def run(self, operation: Callable[[], Awaitable[T]], state: Optional[RetryState] = None) -> T:
        state = state if state is not None else RetryState()

        while True:
            state.phase = RetryPhase.READY
            state.attempt += 1
            try:
                result = await operation()
            except Exception as e:
                state.last_error = e
                if not self.policy.is_retryable(e):
                    state.phase = RetryPhase.ABORTED
                    logger.warning(f"[{self.label}] Attempt {state.attempt} failed, not retryable: {e}")
                    raise
                if state.attempt >= self.policy.max_attempts:
                    state.phase = RetryPhase.EXHAUSTED
                    logger.error(f"[{self.label}] Giving up after {state.attempt} attempts: {e}")
                    raise

                delay = self.policy.delay_for(state.attempt)
                state.phase = RetryPhase.WAITING
                state.delays.append(delay)
                logger.warning(
                    f"[{self.label}] Attempt {state.attempt}/{self.policy.max_attempts} failed "
                    f"({state.last_error_class}), retrying in {delay:.1f}s"
                )
                await self.sleep(delay)
                continue

            state.phase = RetryPhase.SUCCEEDED
            if state.attempt > 1:
                logger.info(f"[{self.label}] Succeeded on attempt {state.attempt}")
            return result
