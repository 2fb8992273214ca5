# Models package - importing registers every table on SQLModel.metadata
from followup_engine.models.user import User
from followup_engine.models.lead import Lead, Call
from followup_engine.models.task import Task
from followup_engine.models.followup import Followup
from followup_engine.models.automation import AutomationRule, AutomationExecution
from followup_engine.models.sequence import FollowupSequence, SequenceEnrollment
from followup_engine.models.activity import ActivityLog, Actions
