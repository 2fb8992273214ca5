"""
Schedule rule evaluation, business-hours adjustment and the builtin
call-outcome defaults.

All inputs and outputs are naive UTC; business hours are applied in the
rule's own timezone.
"""
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from followup_engine.config import settings
from followup_engine.core.exceptions import raise_validation_error
from followup_engine.models.enums import ScheduleRuleType, TimeUnit

UNIT_DELTAS = {
    TimeUnit.MINUTES.value: lambda n: timedelta(minutes=n),
    TimeUnit.HOURS.value: lambda n: timedelta(hours=n),
    TimeUnit.DAYS.value: lambda n: timedelta(days=n),
    TimeUnit.WEEKS.value: lambda n: timedelta(weeks=n),
}


def resolve_timezone(name: Optional[str]) -> tzinfo:
    name = name or settings.DEFAULT_TIMEZONE
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise_validation_error(f"Unknown timezone '{name}'", "timezone")


def offset(value: int, unit: str) -> timedelta:
    if unit not in UNIT_DELTAS:
        raise_validation_error(f"Unknown time unit '{unit}'", "unit")
    return UNIT_DELTAS[unit](value)


def adjust_to_business_hours(
    when: datetime,
    tz_name: Optional[str] = None,
    start_hour: Optional[int] = None,
    end_hour: Optional[int] = None
) -> datetime:
    """
    Shift a naive UTC time forward into the next business window.

    Weekends move to Monday at opening, early times move to opening the same
    day, times at or after closing move to opening the next day. A time already
    inside business hours is returned unchanged.
    """
    start_hour = settings.BUSINESS_HOURS_START if start_hour is None else start_hour
    end_hour = settings.BUSINESS_HOURS_END if end_hour is None else end_hour
    tz = resolve_timezone(tz_name)

    local = when.replace(tzinfo=timezone.utc).astimezone(tz)
    opening = dict(hour=start_hour, minute=0, second=0, microsecond=0)

    while True:
        if local.weekday() >= 5:
            local = (local + timedelta(days=7 - local.weekday())).replace(**opening)
            continue
        if local.hour < start_hour:
            local = local.replace(**opening)
            break
        if local.hour >= end_hour:
            local = (local + timedelta(days=1)).replace(**opening)
            continue
        break

    return local.astimezone(timezone.utc).replace(tzinfo=None)


def is_business_hours(when: datetime, tz_name: Optional[str] = None) -> bool:
    return adjust_to_business_hours(when, tz_name) == when


def parse_datetime(value: Any) -> datetime:
    """Accept datetimes or ISO strings; aware values are converted to naive UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise_validation_error(f"Invalid datetime '{value}'", "at")
    if not isinstance(value, datetime):
        raise_validation_error("Expected a datetime", "at")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def compute_scheduled_time(rule: Optional[Dict[str, Any]], base_time: datetime) -> datetime:
    """
    Evaluate a schedule rule of the shape
    ``{type, value, unit, business_hours_only, timezone, at}``.
    Missing fields default to one business day later.
    """
    rule = rule or {}
    rule_type = rule.get("type", ScheduleRuleType.RELATIVE.value)
    tz_name = rule.get("timezone")
    business_only = bool(rule.get("business_hours_only", rule.get("businessHoursOnly", False)))

    if rule_type == ScheduleRuleType.ABSOLUTE.value:
        if "at" not in rule:
            raise_validation_error("Absolute schedule rules need an 'at' time", "schedule_rule")
        scheduled = parse_datetime(rule["at"])
    elif rule_type in (ScheduleRuleType.RELATIVE.value, ScheduleRuleType.BUSINESS_HOURS.value):
        value = int(rule.get("value", 1))
        unit = rule.get("unit", TimeUnit.DAYS.value)
        scheduled = base_time + offset(value, unit)
        if rule_type == ScheduleRuleType.BUSINESS_HOURS.value:
            business_only = True
    else:
        raise_validation_error(f"Unknown schedule rule type '{rule_type}'", "schedule_rule")

    if business_only:
        scheduled = adjust_to_business_hours(scheduled, tz_name)
    return scheduled


def compute_step_time(timing: Optional[Dict[str, Any]], base_time: datetime, tz_name: Optional[str] = None) -> datetime:
    """Scheduled time of a sequence step from its ``{delay, unit, business_hours_only}`` timing."""
    timing = timing or {}
    rule = {
        "type": ScheduleRuleType.RELATIVE.value,
        "value": timing.get("delay", 1),
        "unit": timing.get("unit", TimeUnit.DAYS.value),
        "business_hours_only": timing.get("business_hours_only", timing.get("businessHoursOnly", False)),
        "timezone": timing.get("timezone", tz_name),
    }
    return compute_scheduled_time(rule, base_time)


# Default delay before a followup, by call outcome
DEFAULT_OUTCOME_DELAYS = {
    "no_answer": timedelta(days=1),
    "voicemail": timedelta(days=2),
    "callback_requested": timedelta(hours=4),
    "follow_up_scheduled": timedelta(weeks=1),
    "meeting_scheduled": timedelta(hours=2),
    "demo_scheduled": timedelta(hours=4),
    "proposal_requested": timedelta(days=1),
    "not_interested": timedelta(weeks=4),
}
DEFAULT_OUTCOME_DELAY = timedelta(days=3)


def default_followup_time(outcome: Optional[str], base_time: datetime, tz_name: Optional[str] = None) -> datetime:
    delay = DEFAULT_OUTCOME_DELAYS.get(outcome, DEFAULT_OUTCOME_DELAY)
    return adjust_to_business_hours(base_time + delay, tz_name)


# Builtin task template per call outcome: (title, type, priority, due in, estimated minutes)
CALL_OUTCOME_TEMPLATES = {
    "no_answer": ("Call back {name}", "call", "medium", timedelta(days=1), 15),
    "voicemail": ("Follow up on voicemail left for {name}", "call", "medium", timedelta(days=2), 15),
    "callback_requested": ("Return callback to {name}", "call", "high", timedelta(hours=4), 20),
    "follow_up_scheduled": ("Prepare for scheduled follow-up with {name}", "preparation", "medium", timedelta(weeks=1), 30),
    "meeting_scheduled": ("Prepare for meeting with {name}", "preparation", "high", timedelta(hours=2), 45),
    "demo_scheduled": ("Prepare demo for {name}", "preparation", "high", timedelta(hours=4), 60),
    "proposal_requested": ("Draft proposal for {name}", "proposal", "high", timedelta(days=1), 120),
    "not_interested": ("Add {name} to nurture list", "administrative", "low", timedelta(days=3), 10),
}
FALLBACK_TEMPLATE = ("Follow-up task for {name}", "other", "medium", timedelta(days=1), 30)


def call_outcome_template(outcome: Optional[str], lead_name: Optional[str], base_time: datetime) -> Dict[str, Any]:
    title, task_type, priority, due_in, estimate = CALL_OUTCOME_TEMPLATES.get(outcome, FALLBACK_TEMPLATE)
    return {
        "title": title.format(name=lead_name or "prospect"),
        "type": task_type,
        "priority": priority,
        "due_date": base_time + due_in,
        "estimated_duration": estimate,
    }


_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def interpolate(template: Optional[str], variables: Dict[str, Any]) -> Optional[str]:
    """Replace ``{{name}}`` placeholders; unknown placeholders are left as-is."""
    if template is None:
        return None

    def _sub(match):
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, template)
