"""
Enumerations for tasks, follow-ups, automation rules and sequences.
Values are stored as plain strings.
"""
from enum import Enum


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    RESEARCH = "research"
    PREPARATION = "preparation"
    FOLLOW_UP = "follow_up"
    MEETING = "meeting"
    DEMO = "demo"
    PROPOSAL = "proposal"
    CONTRACT = "contract"
    ADMINISTRATIVE = "administrative"
    DATA_ENTRY = "data_entry"
    ANALYSIS = "analysis"
    OTHER = "other"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"
    ON_HOLD = "on_hold"
    DEFERRED = "deferred"


class TaskOutcome(str, Enum):
    SUCCESSFUL = "successful"
    PARTIAL = "partial"
    UNSUCCESSFUL = "unsuccessful"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"
    BLOCKED = "blocked"
    ESCALATED = "escalated"


class FollowupType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    SMS = "sms"
    MEETING = "meeting"
    DEMO = "demo"
    PROPOSAL = "proposal"
    QUOTE = "quote"
    CONTRACT = "contract"
    FOLLOWUP_CALL = "followup_call"
    NURTURE = "nurture"
    OTHER = "other"


class FollowupStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"
    RESCHEDULED = "rescheduled"


class FollowupOutcome(str, Enum):
    SUCCESSFUL = "successful"
    NO_ANSWER = "no_answer"
    VOICEMAIL = "voicemail"
    CALLBACK_REQUESTED = "callback_requested"
    NOT_INTERESTED = "not_interested"
    FOLLOW_UP_SCHEDULED = "follow_up_scheduled"
    MEETING_SCHEDULED = "meeting_scheduled"
    DEMO_SCHEDULED = "demo_scheduled"
    PROPOSAL_REQUESTED = "proposal_requested"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"
    UNSUBSCRIBED = "unsubscribed"
    OTHER = "other"


class CreatedVia(str, Enum):
    MANUAL = "manual"
    AUTOMATION = "automation"
    CALL_OUTCOME = "call_outcome"
    SEQUENCE = "sequence"
    ESCALATION = "escalation"
    RESCHEDULED = "rescheduled"
    API = "api"


class TriggerEvent(str, Enum):
    CALL_COMPLETED = "call_completed"
    CALL_OUTCOME = "call_outcome"
    LEAD_CREATED = "lead_created"
    LEAD_UPDATED = "lead_updated"
    FOLLOWUP_COMPLETED = "followup_completed"
    TIME_BASED = "time_based"
    LEAD_SCORE_CHANGE = "lead_score_change"
    ENGAGEMENT_THRESHOLD = "engagement_threshold"


class RuleAction(str, Enum):
    CREATE_FOLLOWUP = "create_followup"
    CREATE_TASK = "create_task"


class AssignmentType(str, Enum):
    ORIGINAL_USER = "original_user"
    ROUND_ROBIN = "round_robin"
    TERRITORY = "territory"
    SKILL_BASED = "skill_based"


class AssignmentFallback(str, Enum):
    MANAGER = "manager"
    ORIGINAL_USER = "original_user"


class ScheduleRuleType(str, Enum):
    RELATIVE = "relative"
    ABSOLUTE = "absolute"
    BUSINESS_HOURS = "business_hours"


class TimeUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


class SequenceCategory(str, Enum):
    NURTURE = "nurture"
    SALES = "sales"
    ONBOARDING = "onboarding"
    RETENTION = "retention"
    REACTIVATION = "reactivation"
    UPSELL = "upsell"
    CROSS_SELL = "cross_sell"
    CUSTOM = "custom"


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXITED = "exited"


class NotificationKind(str, Enum):
    REMINDER = "reminder"
    OVERDUE = "overdue"
    DIGEST = "digest"
    ESCALATION = "escalation"
    ASSIGNMENT = "assignment"


TERMINAL_FOLLOWUP_STATUSES = (FollowupStatus.COMPLETED.value, FollowupStatus.CANCELLED.value)
CLOSED_TASK_STATUSES = (TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value)
