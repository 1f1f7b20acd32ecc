"""Tests for betting/proposal.py -- stake parsing and proposal validation."""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

from decimal import Decimal

import pytest
from betting.proposal import (
    format_amount, parse_stake, payout_amount, validate_admin_notes,
    validate_evidence, validate_proposal, validate_reason,
)
from conftest import PROPOSAL


@pytest.mark.parametrize("value,expected", [
    ("100", Decimal("100")),
    ("0.5", Decimal("0.5")),
    ("12.123456", Decimal("12.123456")),
    ("999999999999.999999", Decimal("999999999999.999999")),
])
def test_parse_stake_valid(value, expected):
    assert parse_stake(value) == expected


@pytest.mark.parametrize("value", ["", "abc", "-1", "1.1234567", "1e3", ".5", "0", "0.000000", 10,
                                   "1" * 13, "1" * 23])
def test_parse_stake_invalid(value):
    with pytest.raises(ValueError):
        parse_stake(value)


def test_format_amount_six_places():
    assert format_amount(Decimal("100")) == "100.000000"
    assert format_amount("0.1") == "0.100000"


def test_payout_is_double_stake():
    assert payout_amount("100.000000") == "200.000000"
    assert payout_amount("0.000001") == "0.000002"


def test_valid_proposal():
    assert validate_proposal(PROPOSAL) == (True, [])


def test_stake_over_twelve_digits_rejected():
    ok, errors = validate_proposal({**PROPOSAL, "stake": "1" * 13})
    assert not ok
    assert len(errors) == 1
    assert validate_proposal({**PROPOSAL, "stake": "1" * 12}) == (True, [])


def test_not_a_dict():
    ok, errors = validate_proposal("nope")
    assert not ok


def test_collects_every_error():
    ok, errors = validate_proposal({"title": "hey", "description": "short", "terms": "", "stake": "x"})
    assert not ok
    assert len(errors) == 4


def test_title_bounds():
    assert not validate_proposal({**PROPOSAL, "title": "a" * 201})[0]
    assert validate_proposal({**PROPOSAL, "title": "a" * 200})[0]
    assert validate_proposal({**PROPOSAL, "title": "abcde"})[0]


def test_category_must_be_known():
    ok, errors = validate_proposal({**PROPOSAL, "category": "gambling"})
    assert not ok
    assert "category" in errors[0]


def test_category_optional():
    proposal = {k: v for k, v in PROPOSAL.items() if k != "category"}
    assert validate_proposal(proposal)[0]


@pytest.mark.parametrize("hours,ok", [(1, True), (720, True), (0, False), (721, False), (True, False), ("24", False)])
def test_expiry_hours(hours, ok):
    assert validate_proposal({**PROPOSAL, "expires_in_hours": hours})[0] is ok


def test_text_validators():
    assert validate_evidence("short") != []
    assert validate_evidence("long enough evidence") == []
    assert validate_reason(None) == ["reason is required"]
    assert validate_admin_notes(None) == []
    assert validate_admin_notes("x" * 2001) != []
