"""Bet proposal validation and stake amount handling.

Stakes are fixed-point with six fractional digits and are carried as
strings everywhere outside this module, e.g. "100.000000".
"""

import re
from decimal import Decimal, InvalidOperation

from protocol import (
    STAKE_PATTERN, STAKE_QUANTUM, Category,
    TITLE_MIN, TITLE_MAX, DESCRIPTION_MIN, DESCRIPTION_MAX, TERMS_MIN, TERMS_MAX,
    EVIDENCE_MIN, EVIDENCE_MAX, REASON_MIN, REASON_MAX, ADMIN_NOTES_MAX,
    MIN_EXPIRY_HOURS, MAX_EXPIRY_HOURS,
)

_STAKE_RE = re.compile(STAKE_PATTERN)


def parse_stake(value) -> Decimal:
    """Parse a stake string. Raises ValueError on anything but a positive amount that fits decimal(18,6)."""
    if not isinstance(value, str) or not _STAKE_RE.match(value):
        raise ValueError(f"stake must be a decimal string with at most 12 integer and 6 fractional digits, got {value!r}")
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"stake is not a number: {value!r}")
    if amount <= 0:
        raise ValueError("stake must be greater than zero")
    return amount


def format_amount(amount) -> str:
    """Render an amount with exactly six fractional digits."""
    return str(Decimal(amount).quantize(STAKE_QUANTUM))


def payout_amount(stake: str) -> str:
    """Both stakes go to the winner."""
    return format_amount(Decimal(stake) * 2)


def check_text(field: str, value, min_len: int, max_len: int) -> list[str]:
    if not isinstance(value, str):
        return [f"{field} is required"]
    n = len(value.strip())
    if n < min_len:
        return [f"{field} must be at least {min_len} characters"]
    if len(value) > max_len:
        return [f"{field} must be at most {max_len} characters"]
    return []


def validate_proposal(proposal: dict):
    """Validate a proposal dict.

    Returns:
        (True, []) if valid, (False, [errors]) otherwise.
    """
    if not isinstance(proposal, dict):
        return False, ["proposal is not a dict"]

    errors = []
    errors += check_text("title", proposal.get("title"), TITLE_MIN, TITLE_MAX)
    errors += check_text("description", proposal.get("description"), DESCRIPTION_MIN, DESCRIPTION_MAX)
    errors += check_text("terms", proposal.get("terms"), TERMS_MIN, TERMS_MAX)

    try:
        parse_stake(proposal.get("stake"))
    except ValueError as e:
        errors.append(str(e))

    category = proposal.get("category")
    if category is not None and category not in {c.value for c in Category}:
        errors.append(f"category must be one of {', '.join(c.value for c in Category)}")

    hours = proposal.get("expires_in_hours")
    if hours is not None:
        if isinstance(hours, bool) or not isinstance(hours, int):
            errors.append("expires_in_hours must be an integer")
        elif not MIN_EXPIRY_HOURS <= hours <= MAX_EXPIRY_HOURS:
            errors.append(f"expires_in_hours must be between {MIN_EXPIRY_HOURS} and {MAX_EXPIRY_HOURS}")

    return (len(errors) == 0, errors)


def validate_evidence(evidence) -> list[str]:
    return check_text("evidence", evidence, EVIDENCE_MIN, EVIDENCE_MAX)


def validate_reason(reason) -> list[str]:
    return check_text("reason", reason, REASON_MIN, REASON_MAX)


def validate_optional_evidence(evidence) -> list[str]:
    if evidence is None:
        return []
    if not isinstance(evidence, str) or len(evidence) > EVIDENCE_MAX:
        return [f"evidence must be at most {EVIDENCE_MAX} characters"]
    return []


def validate_admin_notes(notes) -> list[str]:
    if notes is None:
        return []
    if not isinstance(notes, str) or len(notes) > ADMIN_NOTES_MAX:
        return [f"admin notes must be at most {ADMIN_NOTES_MAX} characters"]
    return []
