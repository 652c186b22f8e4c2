"""
Core trigger matching engine.

An event moves through received -> matched -> dispatched -> processed.
Triggers of the event's type are evaluated in priority order; each one
that passes conditions, lead filters, cooldown and quotas is dispatched.
A failing action never stops its siblings, and the event is marked
processed exactly once.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from outreach_engine.models import (
    db, BehavioralEvent, Enrollment, Lead, ScheduledExecution, Trigger, TriggerExecutionLog
)
from outreach_engine.services import rate_limiting
from outreach_engine.services.conditions import parse_conditions
from outreach_engine.services.trigger_engine.action_dispatcher import ActionDispatcher
from outreach_engine.utils.exceptions import NotFound, ValidationError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
EVENT_STRING_FIELDS = ('lead_id', 'contact_email', 'session_id', 'source', 'ip_address', 'user_agent')

# Event types counted on the lead's active enrollments for template pause rules
ENGAGEMENT_COUNTERS = {
    'email_reply': 'replies_received',
    'meeting_booked': 'meetings_booked',
}


class TriggerEngine:
    """Matches behavioral events against triggers and dispatches their actions."""

    def __init__(self, dispatcher: Optional[ActionDispatcher] = None):
        self.dispatcher = dispatcher or ActionDispatcher()

    # Event ingestion

    def _validate_event(self, payload: Any) -> Dict[str, str]:
        if not isinstance(payload, dict):
            return {'event': 'must be an object'}

        errors = {}
        event_type = payload.get('event_type')
        if not isinstance(event_type, str) or not event_type.strip() or len(event_type) > 100:
            errors['event_type'] = 'is required (1-100 characters)'

        if 'event_data' in payload and not isinstance(payload['event_data'], dict):
            errors['event_data'] = 'must be an object'

        for field in EVENT_STRING_FIELDS:
            if payload.get(field) is not None and not isinstance(payload[field], str):
                errors[field] = 'must be a string'

        email = payload.get('contact_email')
        if isinstance(email, str) and not EMAIL_RE.match(email):
            errors['contact_email'] = 'must be a valid email address'
        return errors

    def _resolve_lead_id(self, org_id: str, payload: Dict[str, Any]) -> Optional[str]:
        lead_id = payload.get('lead_id')
        if lead_id:
            if not Lead.query.filter_by(id=lead_id, org_id=org_id).first():
                raise ValidationError("Unknown lead", {'lead_id': 'no such lead in this organization'})
            return lead_id

        if payload.get('contact_email'):
            lead = Lead.find_by_email(org_id, payload['contact_email'])
            if lead:
                return lead.id
        return None

    def track_events(self, org_id: str, payloads: List[Dict[str, Any]], now: datetime = None) -> List[str]:
        """
        Validate, store and synchronously process a batch of events.

        The whole batch is validated before anything is stored. Returns the
        new event ids in input order.
        """
        if not isinstance(payloads, list) or not payloads:
            raise ValidationError("At least one event is required", {'events': 'must be a non-empty list'})

        errors = {}
        for index, payload in enumerate(payloads):
            for field, message in self._validate_event(payload).items():
                errors[f"events[{index}].{field}"] = message
        if errors:
            raise ValidationError("Invalid events", errors)

        lead_ids = []
        for index, payload in enumerate(payloads):
            try:
                lead_ids.append(self._resolve_lead_id(org_id, payload))
            except ValidationError as e:
                raise ValidationError(e.message, {f"events[{index}].{field}": message
                                                  for field, message in e.details.items()})

        events = []
        for payload, lead_id in zip(payloads, lead_ids):
            event = BehavioralEvent(
                org_id=org_id,
                lead_id=lead_id,
                contact_email=payload.get('contact_email'),
                session_id=payload.get('session_id'),
                event_type=payload['event_type'].strip(),
                event_data=payload.get('event_data') or {},
                source=payload.get('source'),
                ip_address=payload.get('ip_address'),
                user_agent=payload.get('user_agent'),
                created_at=now or datetime.utcnow(),
                matched_trigger_ids=[]
            )
            db.session.add(event)
            events.append(event)
            self._record_engagement(event)
        db.session.commit()

        event_ids = [event.id for event in events]
        for event_id in event_ids:
            try:
                self.process_event(org_id, event_id, now=now)
            except Exception as e:
                # Stored events stay unprocessed and can be re-run
                db.session.rollback()
                logger.exception(f"Error processing event {event_id}: {str(e)}")

        return event_ids

    def _record_engagement(self, event: BehavioralEvent):
        """Bump reply/meeting counters on the lead's active enrollments."""
        counter = ENGAGEMENT_COUNTERS.get(event.event_type)
        if counter is None or not event.lead_id:
            return
        column = getattr(Enrollment, counter)
        Enrollment.query.filter(
            Enrollment.org_id == event.org_id,
            Enrollment.lead_id == event.lead_id,
            Enrollment.status == 'active'
        ).update({column: column + 1}, synchronize_session=False)

    def track_event(self, org_id: str, payload: Dict[str, Any], now: datetime = None) -> str:
        return self.track_events(org_id, [payload], now=now)[0]

    # Matching

    def _active_triggers(self, org_id: str, event_type: str) -> List[Trigger]:
        return Trigger.query.filter_by(
            org_id=org_id,
            trigger_type=event_type,
            is_active=True
        ).order_by(Trigger.priority.desc(), Trigger.created_at.asc(), Trigger.id.asc()).all()

    def _lead_matches(self, trigger: Trigger, lead: Optional[Lead]) -> bool:
        if not trigger.lead_filters:
            return True
        if lead is None:
            return False
        return parse_conditions(trigger.lead_filters, list_means_in=True).matches(lead.filter_context())

    def _limit_reason(self, trigger: Trigger, lead_id: Optional[str], now: datetime) -> Optional[str]:
        """Why a matched trigger may not fire right now, or None."""
        if lead_id and not rate_limiting.check_cooldown(trigger.id, lead_id, trigger.cooldown_hours, now):
            return 'Cooldown period not met'
        if not rate_limiting.check_lead_quota(trigger, lead_id):
            return 'Max triggers per lead reached'
        if not rate_limiting.check_quota(trigger):
            return 'Max total triggers reached'
        return None

    def _log_skip(self, trigger: Trigger, event: BehavioralEvent, reason: str, now: datetime) -> Dict[str, Any]:
        db.session.add(TriggerExecutionLog(
            org_id=trigger.org_id,
            trigger_id=trigger.id,
            event_id=event.id,
            lead_id=event.lead_id,
            action_type=trigger.action_type,
            action_config=dict(trigger.action_config or {}),
            status='skipped',
            error_message=reason,
            created_at=now
        ))
        db.session.commit()
        logger.info(f"Trigger '{trigger.name}' skipped for event {event.id}: {reason}")
        return {'trigger_id': trigger.id, 'trigger_name': trigger.name, 'status': 'skipped', 'message': reason}

    def _log_failure(self, trigger_id: str, trigger_name: str, event: BehavioralEvent,
                     error: Exception, now: datetime) -> Dict[str, Any]:
        db.session.rollback()
        trigger = Trigger.query.get(trigger_id)
        db.session.add(TriggerExecutionLog(
            org_id=trigger.org_id,
            trigger_id=trigger_id,
            event_id=event.id,
            lead_id=event.lead_id,
            action_type=trigger.action_type,
            action_config=dict(trigger.action_config or {}),
            status='failed',
            error_message=str(error),
            created_at=now
        ))
        db.session.commit()
        return {'trigger_id': trigger_id, 'trigger_name': trigger_name, 'status': 'failed', 'message': str(error)}

    def process_event(self, org_id: str, event_id: str, now: datetime = None) -> List[Dict[str, Any]]:
        """Evaluate one stored event against the org's triggers. Already processed events are a no-op."""
        now = now or datetime.utcnow()
        event = BehavioralEvent.query.filter_by(id=event_id, org_id=org_id).first()
        if not event:
            raise NotFound('Event', event_id)
        if event.processed:
            logger.info(f"Event {event_id} already processed, skipping")
            return []

        lead = Lead.query.filter_by(id=event.lead_id, org_id=org_id).first() if event.lead_id else None
        triggers = self._active_triggers(org_id, event.event_type)
        results = []
        matched_trigger_ids = []

        for trigger in triggers:
            trigger_id, trigger_name = trigger.id, trigger.name
            try:
                if not parse_conditions(trigger.conditions).matches(event.event_data):
                    continue
                if not self._lead_matches(trigger, lead):
                    continue

                reason = self._limit_reason(trigger, event.lead_id, now)
                if reason:
                    results.append(self._log_skip(trigger, event, reason, now))
                    continue

                results.append(self.dispatcher.dispatch(trigger, event, now))
                matched_trigger_ids.append(trigger_id)
            except Exception as e:
                logger.exception(f"Error evaluating trigger '{trigger_name}' for event {event_id}")
                results.append(self._log_failure(trigger_id, trigger_name, event, e, now))

        # Conditional update so an event is only ever marked processed once
        updated = BehavioralEvent.query.filter(
            BehavioralEvent.id == event_id,
            BehavioralEvent.processed.is_(False)
        ).update({
            BehavioralEvent.processed: True,
            BehavioralEvent.processed_at: now,
            BehavioralEvent.matched_trigger_ids: matched_trigger_ids
        }, synchronize_session=False)
        db.session.commit()
        if not updated:
            logger.warning(f"Event {event_id} was marked processed concurrently")

        logger.info(f"Processed event {event_id} ({event.event_type}): {len(matched_trigger_ids)} of {len(triggers)} triggers matched")
        return results

    def fire_scheduled_action(self, execution: ScheduledExecution, now: datetime = None) -> Dict[str, Any]:
        """Run a delayed trigger action picked up by the sweep, re-checking cooldown and quotas first."""
        now = now or datetime.utcnow()
        trigger = Trigger.query.filter_by(id=execution.trigger_id, org_id=execution.org_id).first()
        event = BehavioralEvent.query.filter_by(id=execution.event_id, org_id=execution.org_id).first()
        if not trigger or not event:
            raise NotFound('Trigger' if not trigger else 'Event', execution.trigger_id if not trigger else execution.event_id)

        if not trigger.is_active:
            return self._log_skip(trigger, event, 'Trigger deactivated', now)

        reason = self._limit_reason(trigger, event.lead_id, now)
        if reason:
            return self._log_skip(trigger, event, reason, now)

        return self.dispatcher.dispatch(trigger, event, now, honor_delay=False)

    def get_lead_events(self, org_id: str, lead_id: str, limit: int = 50) -> List[BehavioralEvent]:
        return BehavioralEvent.query.filter_by(org_id=org_id, lead_id=lead_id).order_by(
            BehavioralEvent.created_at.desc()
        ).limit(limit).all()
