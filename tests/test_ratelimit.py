"""Tests for betting/ratelimit.py -- sliding-window action limits."""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

import pytest
from betting.errors import RateLimited
from betting.ratelimit import ActionRateLimiter
from conftest import FakeClock, HOUR


@pytest.fixture
def clock():
    return FakeClock()


def test_under_limit_passes(clock):
    rl = ActionRateLimiter(limit=3, window=HOUR, clock=clock)
    for _ in range(2):
        rl.check_limit("a")
        rl.record_action("a")
    rl.check_limit("a")
    assert rl.remaining("a") == 1


def test_limit_reached(clock):
    rl = ActionRateLimiter(limit=2, window=HOUR, clock=clock)
    rl.record_action("a")
    rl.record_action("a")
    with pytest.raises(RateLimited) as exc:
        rl.check_limit("a")
    assert exc.value.status_code == 429
    assert exc.value.details["retry_after"] == HOUR + 1


def test_checks_do_not_consume(clock):
    rl = ActionRateLimiter(limit=1, window=HOUR, clock=clock)
    for _ in range(5):
        rl.check_limit("a")
    assert rl.remaining("a") == 1


def test_window_slides(clock):
    rl = ActionRateLimiter(limit=1, window=HOUR, clock=clock)
    rl.record_action("a")
    clock.advance(HOUR - 1)
    with pytest.raises(RateLimited):
        rl.check_limit("a")
    clock.advance(1)
    rl.check_limit("a")


def test_per_agent(clock):
    rl = ActionRateLimiter(limit=1, window=HOUR, clock=clock)
    rl.record_action("a")
    rl.check_limit("b")


def test_default_is_ten_per_hour():
    rl = ActionRateLimiter()
    assert (rl.limit, rl.window) == (10, 3600)
