"""
Token bucket rate limiter for outbound LLM calls
"""
import asyncio
import itertools
import logging
import math
import time
from collections import deque
from typing import Deque, Dict, Tuple

logger = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 30
MAX_SLEEP_SECONDS = 5
MIN_SLEEP_SECONDS = 0.01


class RateLimitExceeded(Exception):
    """Request would wait longer than the limiter allows"""

    def __init__(self, message: str = "Rate limit exceeded: request would take too long"):
        super().__init__(message)
        self.message = message


class RateLimiter:
    """
    Token bucket: `max_tokens` burst, refilled at `refill_rate` tokens per second

    Waiters are served strictly in arrival order; only the head of the
    queue may take tokens, so a large request is never overtaken.
    """

    def __init__(self, max_tokens: float = 10, refill_rate: float = 1.0, request_cost: float = 1):
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate
        self.request_cost = request_cost
        self.tokens = float(max_tokens)
        self.last_refill = time.monotonic()
        self._queue: Deque[Tuple[int, float]] = deque()
        self._tickets = itertools.count()

    def _refill(self):
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def _seconds_until_served(self, waiter: Tuple[int, float]) -> float:
        """Time for the bucket to cover every queued cost up to and including `waiter`"""
        needed = 0.0
        for entry in self._queue:
            needed += entry[1]
            if entry is waiter:
                break
        return max(0.0, needed - self.tokens) / self.refill_rate

    async def acquire(self, cost: float = None):
        cost = self.request_cost if cost is None else cost

        self._refill()
        if cost > self.refill_rate * MAX_WAIT_SECONDS + self.tokens:
            raise RateLimitExceeded()

        waiter = (next(self._tickets), cost)
        self._queue.append(waiter)
        try:
            while True:
                self._refill()
                head = self._queue[0] if self._queue else waiter
                if head is waiter and self.tokens >= cost:
                    self.tokens -= cost
                    return
                wait = max(self._seconds_until_served(waiter), MIN_SLEEP_SECONDS)
                logger.debug(f"Rate limiter waiting {wait:.2f}s for {cost} tokens")
                await asyncio.sleep(min(wait, MAX_SLEEP_SECONDS))
        finally:
            # Also reached on cancellation; reset() may already have emptied the queue
            if waiter in self._queue:
                self._queue.remove(waiter)

    def status(self) -> Dict[str, int]:
        self._refill()
        queue_cost = sum(cost for _, cost in self._queue)
        tokens_needed = max(0.0, queue_cost - self.tokens)
        return {
            'availableTokens': math.floor(self.tokens),
            'queueLength': len(self._queue),
            'estimatedWaitMs': math.ceil(tokens_needed / self.refill_rate * 1000),
        }

    def reset(self):
        self.tokens = float(self.max_tokens)
        self.last_refill = time.monotonic()
        self._queue.clear()


# Burst of 5, roughly 30 requests per minute sustained
llm_rate_limiter = RateLimiter(max_tokens=5, refill_rate=0.5, request_cost=1)


def get_llm_rate_limiter() -> RateLimiter:
    """FastAPI dependency for the shared LLM rate limiter"""
    return llm_rate_limiter
