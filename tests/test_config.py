"""Tests for betting/config.py."""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import dataclasses

import pytest
from betting.config import Config
from protocol import ZERO_ADDRESS


def test_defaults_from_empty_env():
    c = Config.from_env({})
    assert c.db_path == ":memory:"
    assert c.admin_token == ""
    assert c.facilitator_address == ZERO_ADDRESS
    assert (c.action_limit, c.action_window) == (10, 3600)
    assert c.win_claim_timeout_hours == 24
    assert c.default_expiry_hours == 168
    assert c.sweep_interval == 0
    assert c.settlement_lease == 300


def test_reads_env():
    c = Config.from_env({
        "BET_DB": "/tmp/bets.db",
        "BET_PORT": "9000",
        "BET_ADMIN_TOKEN": "s3cret",
        "BET_ACTION_LIMIT": "3",
        "BET_SWEEP_INTERVAL": "30",
        "BET_LOG_LEVEL": "debug",
        "BET_SETTLEMENT_LEASE": "45",
    })
    assert (c.db_path, c.port, c.admin_token) == ("/tmp/bets.db", 9000, "s3cret")
    assert c.action_limit == 3
    assert c.sweep_interval == 30
    assert c.settlement_lease == 45
    assert c.log_level == "DEBUG"


def test_frozen():
    with pytest.raises(dataclasses.FrozenInstanceError):
        Config().port = 1


def test_bad_number():
    with pytest.raises(ValueError):
        Config.from_env({"BET_PORT": "eighty"})
