"""
Action dispatch for matched triggers.

Every dispatch writes exactly one TriggerExecutionLog row: ``scheduled`` for
delayed actions, otherwise ``success``, ``failed`` or ``skipped``. Trigger
counters only move on ``success``.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import pytz
from flask import current_app

from outreach_engine.models import (
    db, BehavioralEvent, Enrollment, Lead, ScheduledExecution, Task, Trigger, TriggerExecutionLog
)
from outreach_engine.services import rate_limiting
from outreach_engine.services.mailer import Mailer
from outreach_engine.services.sequence_engine import SequenceEngine
from outreach_engine.services.webhook_client import ALLOWED_METHODS, WebhookClient
from outreach_engine.utils.exceptions import EngineError, NotFound, ValidationError

logger = logging.getLogger(__name__)

ACTION_TYPES = [
    'enroll_in_sequence',
    'advance_to_step',
    'switch_branch',
    'pause_sequence',
    'resume_sequence',
    'add_tag',
    'update_field',
    'create_task',
    'send_notification',
    'webhook',
]

# Actions that operate on the event's lead
LEAD_ACTIONS = {
    'enroll_in_sequence', 'advance_to_step', 'switch_branch', 'pause_sequence',
    'resume_sequence', 'add_tag', 'update_field', 'create_task',
}

DEFAULT_TASK_TITLE = 'Follow up on behavioral trigger'
DEFAULT_PAUSE_REASON = 'Behavioral trigger'


def _update_field_items(config: Dict[str, Any]) -> Dict[str, Any]:
    if config.get('field') and 'value' in config:
        return {config['field']: config['value']}
    return dict(config.get('fields') or {})


def _parse_due_date(value: Any) -> datetime:
    """Parse an ISO 8601 timestamp into naive UTC."""
    due_at = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if due_at.tzinfo is not None:
        due_at = due_at.astimezone(pytz.UTC).replace(tzinfo=None)
    return due_at


def validate_action_config(action_type: str, config: Dict[str, Any], allowed_fields: List[str]) -> Dict[str, str]:
    """Return field-level errors for an action config; empty when valid."""
    errors = {}
    if not isinstance(config, dict):
        return {'action_config': 'must be an object'}

    if action_type == 'enroll_in_sequence':
        if not (config.get('template_id') or config.get('sequence_id')):
            errors['action_config.template_id'] = 'template_id or sequence_id is required'

    elif action_type == 'advance_to_step':
        steps = config.get('steps_to_advance', 1)
        if not isinstance(steps, int) or isinstance(steps, bool) or steps < 1:
            errors['action_config.steps_to_advance'] = 'must be an integer >= 1'

    elif action_type == 'switch_branch':
        if not config.get('branch_name'):
            errors['action_config.branch_name'] = 'is required'

    elif action_type == 'add_tag':
        tags = config.get('tags')
        if tags is not None:
            if not isinstance(tags, list) or not tags or not all(isinstance(tag, str) and tag for tag in tags):
                errors['action_config.tags'] = 'must be a non-empty list of strings'
        elif not isinstance(config.get('tag'), str) or not config.get('tag'):
            errors['action_config.tag'] = 'tag or tags is required'

    elif action_type == 'update_field':
        items = _update_field_items(config)
        if not items:
            errors['action_config.field'] = 'field and value, or fields, are required'
        disallowed = sorted(name for name in items if name not in allowed_fields)
        if disallowed:
            errors['action_config.fields'] = f"not allowed: {', '.join(disallowed)}"

    elif action_type == 'create_task':
        if config.get('due_date'):
            try:
                _parse_due_date(config['due_date'])
            except ValueError:
                errors['action_config.due_date'] = 'must be an ISO 8601 timestamp'

    elif action_type == 'send_notification':
        recipients = config.get('recipients')
        if not isinstance(recipients, list) or not recipients:
            errors['action_config.recipients'] = 'must be a non-empty list of email addresses'

    elif action_type == 'webhook':
        parsed = urlparse(config.get('url') or '')
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            errors['action_config.url'] = 'must be an http(s) URL'
        if (config.get('method') or 'POST').upper() not in ALLOWED_METHODS:
            errors['action_config.method'] = f"must be one of {', '.join(ALLOWED_METHODS)}"
        if config.get('headers') is not None and not isinstance(config['headers'], dict):
            errors['action_config.headers'] = 'must be an object'

    return errors


class ActionDispatcher:
    """Executes the configured action of a matched trigger."""

    def __init__(self, sequence_engine=None, mailer=None, webhook_client=None):
        self.sequence_engine = sequence_engine
        self.mailer = mailer  # Initialize lazily
        self.webhook_client = webhook_client

    def _get_sequence_engine(self):
        if self.sequence_engine is None:
            self.sequence_engine = SequenceEngine(mailer=self.mailer, webhook_client=self.webhook_client)
        return self.sequence_engine

    def _get_mailer(self):
        if self.mailer is None:
            self.mailer = Mailer()
        return self.mailer

    def _get_webhook_client(self):
        if self.webhook_client is None:
            self.webhook_client = WebhookClient()
        return self.webhook_client

    def _log(self, trigger: Trigger, event: BehavioralEvent, status: str, now: datetime,
             result_data: Optional[Dict[str, Any]] = None, error_message: Optional[str] = None) -> TriggerExecutionLog:
        entry = TriggerExecutionLog(
            org_id=trigger.org_id,
            trigger_id=trigger.id,
            event_id=event.id,
            lead_id=event.lead_id,
            action_type=trigger.action_type,
            action_config=dict(trigger.action_config or {}),
            status=status,
            result_data=result_data,
            error_message=error_message,
            created_at=now
        )
        db.session.add(entry)
        return entry

    def dispatch(self, trigger: Trigger, event: BehavioralEvent, now: datetime = None,
                 honor_delay: bool = True) -> Dict[str, Any]:
        """Run (or schedule) the trigger's action for an event and return its outcome."""
        now = now or datetime.utcnow()
        trigger_id, trigger_name = trigger.id, trigger.name
        outcome = {'trigger_id': trigger_id, 'trigger_name': trigger_name}

        if honor_delay and (trigger.delay_minutes or 0) > 0:
            due_at = now + timedelta(minutes=trigger.delay_minutes)
            db.session.add(ScheduledExecution(
                org_id=trigger.org_id,
                kind=ScheduledExecution.KIND_TRIGGER_ACTION,
                trigger_id=trigger_id,
                event_id=event.id,
                lead_id=event.lead_id,
                due_at=due_at,
                status='pending'
            ))
            result_data = {'scheduled_for': due_at.isoformat()}
            self._log(trigger, event, 'scheduled', now, result_data=result_data)
            db.session.commit()
            logger.info(f"Trigger '{trigger_name}' action scheduled for {due_at}")
            outcome.update(status='scheduled',
                           message=f"Action scheduled for {trigger.delay_minutes} minutes",
                           result_data=result_data)
            return outcome

        try:
            status, result_data = self._execute(trigger, event, now)
        except Exception as e:
            db.session.rollback()
            message = e.message if isinstance(e, EngineError) else str(e)
            if not isinstance(e, EngineError):
                logger.exception(f"Unexpected error running trigger '{trigger_name}'")
            else:
                logger.error(f"Trigger '{trigger_name}' action {trigger.action_type} failed: {message}")
            trigger = Trigger.query.get(trigger_id)
            self._log(trigger, event, 'failed', now, error_message=message)
            db.session.commit()
            outcome.update(status='failed', message=message)
            return outcome

        self._log(trigger, event, status, now, result_data=result_data)
        if status == 'success':
            rate_limiting.record_success(trigger_id, now)
        db.session.commit()

        logger.info(f"Trigger '{trigger_name}' action {trigger.action_type}: {status}")
        outcome.update(status=status, result_data=result_data)
        if status == 'skipped':
            outcome['message'] = (result_data or {}).get('reason')
        return outcome

    def _execute(self, trigger: Trigger, event: BehavioralEvent, now: datetime):
        action_type = trigger.action_type
        config = dict(trigger.action_config or {})

        lead = None
        if action_type in LEAD_ACTIONS:
            lead = Lead.query.filter_by(id=event.lead_id, org_id=trigger.org_id).first() if event.lead_id else None
            if lead is None:
                raise NotFound('Lead', event.lead_id)

        handlers = {
            'enroll_in_sequence': self._enroll_in_sequence,
            'advance_to_step': self._advance_to_step,
            'switch_branch': self._switch_branch,
            'pause_sequence': self._pause_sequence,
            'resume_sequence': self._resume_sequence,
            'add_tag': self._add_tag,
            'update_field': self._update_field,
            'create_task': self._create_task,
            'send_notification': self._send_notification,
            'webhook': self._call_webhook,
        }
        handler = handlers.get(action_type)
        if handler is None:
            raise ValidationError(f"Unsupported action type: {action_type}")
        return handler(trigger, event, lead, config, now)

    def _find_enrollment(self, trigger: Trigger, lead: Lead, config: Dict[str, Any],
                         status: str = 'active') -> Enrollment:
        query = Enrollment.query.filter_by(org_id=trigger.org_id, lead_id=lead.id, status=status)
        template_id = config.get('template_id') or config.get('sequence_id')
        if template_id:
            query = query.filter_by(template_id=template_id)
        enrollment = query.order_by(Enrollment.enrolled_at.desc()).first()
        if not enrollment:
            raise NotFound(f"{status.capitalize()} enrollment")
        return enrollment

    def _enroll_in_sequence(self, trigger, event, lead, config, now):
        result = self._get_sequence_engine().enroll(
            trigger.org_id,
            lead.id,
            config.get('template_id') or config.get('sequence_id'),
            source='behavioral_trigger',
            now=now
        )
        if result['status'] != 'enrolled':
            return 'skipped', {'reason': result.get('reason') or result['status']}
        return 'success', {'enrollment_id': result['enrollment']['id'], 'next_due_at': result.get('next_due_at')}

    def _advance_to_step(self, trigger, event, lead, config, now):
        enrollment = self._find_enrollment(trigger, lead, config)
        enrollment = self._get_sequence_engine().advance(enrollment, config.get('steps_to_advance', 1), now=now)
        return 'success', {'enrollment_id': enrollment.id, 'current_step': enrollment.current_step,
                           'enrollment_status': enrollment.status}

    def _switch_branch(self, trigger, event, lead, config, now):
        enrollment = self._find_enrollment(trigger, lead, config)
        self._get_sequence_engine().switch_branch(enrollment, config['branch_name'])
        return 'success', {'enrollment_id': enrollment.id, 'branch_name': config['branch_name']}

    def _pause_sequence(self, trigger, event, lead, config, now):
        enrollment = self._find_enrollment(trigger, lead, config)
        reason = config.get('reason') or DEFAULT_PAUSE_REASON
        self._get_sequence_engine().pause(enrollment, reason=reason, now=now)
        return 'success', {'enrollment_id': enrollment.id, 'paused_reason': reason}

    def _resume_sequence(self, trigger, event, lead, config, now):
        enrollment = self._find_enrollment(trigger, lead, config, status='paused')
        self._get_sequence_engine().resume(enrollment, now=now)
        return 'success', {'enrollment_id': enrollment.id}

    def _add_tag(self, trigger, event, lead, config, now):
        new_tags = config['tags'] if isinstance(config.get('tags'), list) else [config.get('tag')]
        tags = list(lead.tags or [])
        for tag in new_tags:
            if tag and tag not in tags:
                tags.append(tag)
        lead.tags = tags
        db.session.flush()
        return 'success', {'tags': tags}

    def _update_field(self, trigger, event, lead, config, now):
        updates = _update_field_items(config)
        allowed_fields = current_app.config.get('UPDATE_FIELD_ALLOWED_FIELDS', [])
        disallowed = sorted(name for name in updates if name not in allowed_fields)
        if disallowed:
            raise ValidationError(f"Fields not allowed for update_field: {', '.join(disallowed)}")

        columns = set(Lead.__table__.columns.keys())
        custom_fields = dict(lead.custom_fields or {})
        for name, value in updates.items():
            if name in columns:
                setattr(lead, name, value)
            else:
                custom_fields[name] = value
        lead.custom_fields = custom_fields
        db.session.flush()
        return 'success', {'updated_fields': sorted(updates)}

    def _create_task(self, trigger, event, lead, config, now):
        if config.get('due_date'):
            due_at = _parse_due_date(config['due_date'])
        else:
            due_at = now + timedelta(hours=24)

        task = Task(
            org_id=trigger.org_id,
            lead_id=lead.id,
            title=config.get('title') or DEFAULT_TASK_TITLE,
            description=config.get('description'),
            due_at=due_at,
            priority=config.get('priority') or 'medium',
            assigned_to=config.get('assigned_to'),
            source='behavioral_trigger'
        )
        db.session.add(task)
        db.session.flush()
        return 'success', {'task_id': task.id, 'due_at': due_at.isoformat()}

    def _send_notification(self, trigger, event, lead, config, now):
        lead = Lead.query.filter_by(id=event.lead_id, org_id=trigger.org_id).first() if event.lead_id else None
        subject = config.get('subject') or f"Trigger fired: {trigger.name}"
        message = config.get('message') or f"The '{trigger.name}' trigger matched a {event.event_type} event."
        context = {
            'trigger': trigger.name,
            'event_type': event.event_type,
            'lead': lead.full_name if lead else None,
            'lead_email': lead.email if lead else event.contact_email,
        }
        result = self._get_mailer().send_notification(config['recipients'], subject, message, context)
        return 'success', result

    def _call_webhook(self, trigger, event, lead, config, now):
        response = self._get_webhook_client().call(
            config['url'],
            method=config.get('method', 'POST'),
            payload={'trigger': config, 'event': event.to_dict()},
            headers=config.get('headers')
        )
        return 'success', {'status': response['status'], 'status_text': response['status_text']}
