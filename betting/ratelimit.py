"""Per-agent action rate limiting for propose and counter."""

import threading
import time

from protocol import BET_ACTION_LIMIT, BET_ACTION_WINDOW
from betting.errors import RateLimited


class ActionRateLimiter:
    """Sliding-window counter of successful actions per agent.

    check_limit() runs before a transition; record_action() only after it
    succeeded, so rejected attempts never use up the budget.
    """

    def __init__(self, limit: int = BET_ACTION_LIMIT, window: int = BET_ACTION_WINDOW,
                 clock=time.time):
        self.limit = limit
        self.window = window
        self.clock = clock
        self._actions: dict[str, list[float]] = {}  # agent_id -> action timestamps
        self._lock = threading.Lock()
        self._check_count = 0

    def _recent(self, agent_id: str, now: float) -> list[float]:
        stamps = [t for t in self._actions.get(agent_id, []) if t > now - self.window]
        if stamps:
            self._actions[agent_id] = stamps
        else:
            self._actions.pop(agent_id, None)
        return stamps

    def check_limit(self, agent_id: str) -> None:
        with self._lock:
            self._check_count += 1
            if self._check_count % 100 == 0:
                self._prune()
            now = self.clock()
            stamps = self._recent(agent_id, now)
            if len(stamps) >= self.limit:
                retry_after = int(stamps[0] + self.window - now) + 1
                raise RateLimited(
                    f"Rate limit exceeded: {self.limit} bet actions per "
                    f"{self.window // 60} minutes",
                    retry_after=retry_after,
                )

    def record_action(self, agent_id: str) -> None:
        with self._lock:
            self._actions.setdefault(agent_id, []).append(self.clock())

    def remaining(self, agent_id: str) -> int:
        with self._lock:
            return max(0, self.limit - len(self._recent(agent_id, self.clock())))

    def _prune(self):
        cutoff = self.clock() - self.window
        self._actions = {
            k: [t for t in v if t > cutoff]
            for k, v in self._actions.items()
            if any(t > cutoff for t in v)
        }
