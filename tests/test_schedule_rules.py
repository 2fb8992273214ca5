from datetime import datetime, timedelta

import pytest

from followup_engine.core.exceptions import ValidationError
from followup_engine.services.schedule_rules import (
    adjust_to_business_hours,
    call_outcome_template,
    compute_scheduled_time,
    compute_step_time,
    default_followup_time,
    interpolate,
    is_business_hours,
    parse_datetime,
)

# 2025-03-07 is a Friday
FRIDAY = datetime(2025, 3, 7)
MONDAY_OPEN = datetime(2025, 3, 10, 9, 0)


@pytest.mark.parametrize("when, expected", [
    (datetime(2025, 3, 8, 12, 0), MONDAY_OPEN),              # Saturday
    (datetime(2025, 3, 9, 23, 30), MONDAY_OPEN),             # Sunday night
    (FRIDAY.replace(hour=17), MONDAY_OPEN),                  # Friday closing
    (FRIDAY.replace(hour=7, minute=30), FRIDAY.replace(hour=9)),
    (datetime(2025, 3, 5, 18, 0), datetime(2025, 3, 6, 9, 0)),
    (datetime(2025, 3, 5, 16, 59), datetime(2025, 3, 5, 16, 59)),
])
def test_adjust_to_business_hours(when, expected):
    assert adjust_to_business_hours(when) == expected


@pytest.mark.parametrize("when", [
    datetime(2025, 3, 5, 9, 0),
    datetime(2025, 3, 5, 3, 15),
    datetime(2025, 3, 8, 10, 0),
    datetime(2025, 3, 7, 22, 0),
    datetime(2025, 3, 7, 16, 30),
])
def test_business_hours_adjustment_is_idempotent(when):
    once = adjust_to_business_hours(when)
    assert adjust_to_business_hours(once) == once
    assert is_business_hours(once)


def test_business_hours_in_local_timezone():
    # 12:00 UTC is 07:00 in New York (EST) -> opens 09:00 EST = 14:00 UTC
    adjusted = adjust_to_business_hours(datetime(2025, 3, 5, 12, 0), "America/New_York")
    assert adjusted == datetime(2025, 3, 5, 14, 0)


def test_unknown_timezone_rejected():
    with pytest.raises(ValidationError):
        adjust_to_business_hours(datetime(2025, 3, 5, 12, 0), "Mars/Olympus_Mons")


def test_relative_rule_without_business_hours():
    base = datetime(2025, 3, 7, 16, 0)
    rule = {"type": "relative", "value": 3, "unit": "hours", "business_hours_only": False}
    assert compute_scheduled_time(rule, base) == datetime(2025, 3, 7, 19, 0)


def test_relative_rule_with_business_hours_camel_case_flag():
    base = datetime(2025, 3, 7, 16, 0)
    rule = {"type": "relative", "value": 1, "unit": "days", "businessHoursOnly": True}
    assert compute_scheduled_time(rule, base) == MONDAY_OPEN


def test_business_hours_rule_type_always_adjusts():
    base = datetime(2025, 3, 7, 16, 0)
    rule = {"type": "business_hours", "value": 2, "unit": "hours"}
    assert compute_scheduled_time(rule, base) == MONDAY_OPEN


def test_absolute_rule():
    rule = {"type": "absolute", "at": "2025-04-01T15:00:00Z"}
    assert compute_scheduled_time(rule, FRIDAY) == datetime(2025, 4, 1, 15, 0)


def test_empty_rule_defaults_to_one_day():
    assert compute_scheduled_time(None, FRIDAY) == FRIDAY + timedelta(days=1)


@pytest.mark.parametrize("rule", [
    {"type": "absolute"},
    {"type": "relative", "value": 1, "unit": "fortnights"},
    {"type": "whenever"},
])
def test_invalid_rules(rule):
    with pytest.raises(ValidationError):
        compute_scheduled_time(rule, FRIDAY)


def test_step_timing_friday_afternoon_lands_monday_morning():
    timing = {"delay": 1, "unit": "days", "business_hours_only": True}
    assert compute_step_time(timing, datetime(2025, 3, 7, 16, 0)) == MONDAY_OPEN


def test_callback_requested_template():
    template = call_outcome_template("callback_requested", "Dana Prospect", datetime(2025, 3, 5, 10, 0))
    assert template["priority"] == "high"
    assert template["type"] == "call"
    assert "Dana Prospect" in template["title"]
    assert template["due_date"] == datetime(2025, 3, 5, 14, 0)


@pytest.mark.parametrize("outcome, priority, delay", [
    ("no_answer", "medium", timedelta(days=1)),
    ("not_interested", "low", timedelta(days=3)),
    ("something_new", "medium", timedelta(days=1)),
])
def test_outcome_templates(outcome, priority, delay):
    base = datetime(2025, 3, 5, 10, 0)
    template = call_outcome_template(outcome, None, base)
    assert template["priority"] == priority
    assert template["due_date"] == base + delay
    assert "prospect" in template["title"]


def test_default_followup_time_respects_business_hours():
    # voicemail waits two days: Friday 16:00 -> Sunday -> Monday 09:00
    assert default_followup_time("voicemail", datetime(2025, 3, 7, 16, 0)) == MONDAY_OPEN
    # unknown outcomes wait three days
    assert default_followup_time(None, datetime(2025, 3, 3, 10, 0)) == datetime(2025, 3, 6, 10, 0)


def test_interpolate():
    text = interpolate("Hi {{leadName}}, step {{ stepNumber }} of {{sequenceName}} {{missing}}",
                       {"leadName": "Dana", "stepNumber": 2, "sequenceName": "Nurture"})
    assert text == "Hi Dana, step 2 of Nurture {{missing}}"
    assert interpolate(None, {}) is None


def test_parse_datetime_normalizes_to_naive_utc():
    assert parse_datetime("2025-03-05T12:00:00+02:00") == datetime(2025, 3, 5, 10, 0)
    with pytest.raises(ValidationError):
        parse_datetime("tomorrow-ish")
