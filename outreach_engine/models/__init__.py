# Import db from extensions to use the same instance
from outreach_engine.extensions import db

# Import all models to ensure they are registered with SQLAlchemy
from outreach_engine.models.organization import Organization
from outreach_engine.models.lead import Lead
from outreach_engine.models.task import Task
from outreach_engine.models.behavioral_event import BehavioralEvent
from outreach_engine.models.trigger import Trigger, TriggerExecutionLog
from outreach_engine.models.sequence import SequenceTemplate, SequenceStep, Enrollment
from outreach_engine.models.scheduled_execution import ScheduledExecution
from outreach_engine.models.ab_test import ABTest, ABTestVariant
from outreach_engine.models.suppression import SuppressionEntry, UnsubscribePreference

__all__ = [
    'db', 'Organization', 'Lead', 'Task', 'BehavioralEvent', 'Trigger', 'TriggerExecutionLog',
    'SequenceTemplate', 'SequenceStep', 'Enrollment', 'ScheduledExecution', 'ABTest',
    'ABTestVariant', 'SuppressionEntry', 'UnsubscribePreference'
]
