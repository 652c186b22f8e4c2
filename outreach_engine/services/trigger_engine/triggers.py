"""
Trigger definitions: validation and CRUD.

Conditions and lead filters are parsed into their condition AST when a
trigger is saved so malformed definitions are rejected up front.
"""

import logging
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from outreach_engine.models import db, Trigger, TriggerExecutionLog
from outreach_engine.services.conditions import parse_conditions
from outreach_engine.services.trigger_engine.action_dispatcher import ACTION_TYPES, validate_action_config
from outreach_engine.utils.exceptions import Conflict, NotFound, ValidationError

logger = logging.getLogger(__name__)

TRIGGER_TYPES = [
    'page_visit',
    'email_open',
    'email_click',
    'email_reply',
    'form_submission',
    'linkedin_profile_view',
    'linkedin_connection_accepted',
    'meeting_booked',
    'document_viewed',
    'video_watched',
    'chat_interaction',
    'score_threshold',
    'custom_event',
]

TRIGGER_DEFAULTS = {
    'description': None,
    'is_active': True,
    'conditions': {},
    'lead_filters': None,
    'action_config': {},
    'delay_minutes': 0,
    'cooldown_hours': 24,
    'max_triggers_per_lead': None,
    'max_triggers_total': None,
    'priority': 100,
}

EDITABLE_FIELDS = ['name', 'trigger_type', 'action_type'] + list(TRIGGER_DEFAULTS)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_int(errors: Dict[str, str], data: Dict[str, Any], field: str,
               minimum: int, maximum: Optional[int] = None, nullable: bool = False):
    if field not in data:
        return
    value = data[field]
    if value is None and nullable:
        return
    if not _is_int(value) or value < minimum or (maximum is not None and value > maximum):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f">= {minimum}"
        errors[field] = f"must be an integer {bound}"


def validate_trigger(data: Dict[str, Any]) -> Dict[str, str]:
    """Validate a complete trigger definition, returning field-level errors."""
    errors = {}

    name = data.get('name')
    if not isinstance(name, str) or not 1 <= len(name.strip()) <= 100:
        errors['name'] = 'must be 1-100 characters'

    if data.get('trigger_type') not in TRIGGER_TYPES:
        errors['trigger_type'] = f"must be one of {', '.join(TRIGGER_TYPES)}"

    if data.get('action_type') not in ACTION_TYPES:
        errors['action_type'] = f"must be one of {', '.join(ACTION_TYPES)}"

    if not isinstance(data.get('is_active', True), bool):
        errors['is_active'] = 'must be a boolean'

    _check_int(errors, data, 'delay_minutes', 0)
    _check_int(errors, data, 'cooldown_hours', 0)
    _check_int(errors, data, 'max_triggers_per_lead', 1, nullable=True)
    _check_int(errors, data, 'max_triggers_total', 1, nullable=True)
    _check_int(errors, data, 'priority', 0, 1000)

    try:
        parse_conditions(data.get('conditions') or {})
    except ValidationError as e:
        errors.update({f"conditions.{field}": message for field, message in (e.details or {}).items()})

    if data.get('lead_filters') is not None:
        try:
            parse_conditions(data['lead_filters'], list_means_in=True)
        except ValidationError as e:
            errors.update({f"lead_filters.{field}": message for field, message in (e.details or {}).items()})

    if data.get('action_type') in ACTION_TYPES:
        allowed_fields = current_app.config.get('UPDATE_FIELD_ALLOWED_FIELDS', [])
        errors.update(validate_action_config(data['action_type'], data.get('action_config') or {}, allowed_fields))

    return errors


def get_trigger(org_id: str, trigger_id: str) -> Trigger:
    trigger = Trigger.query.filter_by(id=trigger_id, org_id=org_id).first()
    if not trigger:
        raise NotFound('Trigger', trigger_id)
    return trigger


def _ensure_unique_name(org_id: str, name: str, exclude_id: Optional[str] = None):
    query = Trigger.query.filter_by(org_id=org_id, name=name)
    if exclude_id:
        query = query.filter(Trigger.id != exclude_id)
    if query.first():
        raise Conflict(f'Trigger with name "{name}" already exists', {'name': 'already exists'})


def _commit_trigger(trigger: Trigger):
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict(f'Trigger with name "{trigger.name}" already exists', {'name': 'already exists'})


def create_trigger(org_id: str, data: Dict[str, Any]) -> Trigger:
    payload = dict(TRIGGER_DEFAULTS)
    payload.update({key: value for key, value in data.items() if key in EDITABLE_FIELDS})

    errors = validate_trigger(payload)
    if errors:
        raise ValidationError("Invalid trigger", errors)

    payload['name'] = payload['name'].strip()
    _ensure_unique_name(org_id, payload['name'])

    trigger = Trigger(org_id=org_id, **payload)
    db.session.add(trigger)
    _commit_trigger(trigger)

    logger.info(f"Created trigger '{trigger.name}' ({trigger.trigger_type} -> {trigger.action_type}) for org {org_id}")
    return trigger


def update_trigger(org_id: str, trigger_id: str, updates: Dict[str, Any]) -> Trigger:
    """Apply a partial update; the merged definition is validated as a whole."""
    trigger = get_trigger(org_id, trigger_id)

    merged = {field: getattr(trigger, field) for field in EDITABLE_FIELDS}
    merged.update({key: value for key, value in updates.items() if key in EDITABLE_FIELDS})

    errors = validate_trigger(merged)
    if errors:
        raise ValidationError("Invalid trigger", errors)

    merged['name'] = merged['name'].strip()
    if merged['name'] != trigger.name:
        _ensure_unique_name(org_id, merged['name'], exclude_id=trigger.id)

    for field, value in merged.items():
        setattr(trigger, field, value)
    _commit_trigger(trigger)

    logger.info(f"Updated trigger '{trigger.name}' ({trigger.id})")
    return trigger


def list_triggers(org_id: str, is_active: Optional[bool] = None, trigger_type: Optional[str] = None,
                  action_type: Optional[str] = None) -> List[Trigger]:
    query = Trigger.query.filter_by(org_id=org_id)
    if is_active is not None:
        query = query.filter_by(is_active=is_active)
    if trigger_type:
        query = query.filter_by(trigger_type=trigger_type)
    if action_type:
        query = query.filter_by(action_type=action_type)
    return query.order_by(Trigger.priority.desc(), Trigger.created_at.asc(), Trigger.id.asc()).all()


def get_trigger_history(org_id: str, trigger_id: str, limit: int = 100) -> List[TriggerExecutionLog]:
    trigger = get_trigger(org_id, trigger_id)
    return TriggerExecutionLog.query.filter_by(trigger_id=trigger.id).order_by(
        TriggerExecutionLog.created_at.desc()
    ).limit(limit).all()
