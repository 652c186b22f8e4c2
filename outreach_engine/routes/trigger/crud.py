"""
Basic CRUD operations for triggers.

Triggers are never deleted; set ``is_active`` to false to retire one.
"""

from flask import request, jsonify
from outreach_engine.extensions import db
from outreach_engine.routes.trigger import trigger_bp
from outreach_engine.services.trigger_engine import triggers as trigger_service
from outreach_engine.utils.error_handling import handle_engine_error, handle_exception
from outreach_engine.utils.exceptions import EngineError
from outreach_engine.utils.request_context import get_json_body, get_org_id
import logging

logger = logging.getLogger(__name__)


def _parse_bool_arg(name):
    value = request.args.get(name)
    if value is None:
        return None
    return value.lower() in ('true', '1', 'yes')


@trigger_bp.route('/triggers', methods=['POST'])
def create_trigger():
    """Create a new trigger for the organization."""
    try:
        trigger = trigger_service.create_trigger(get_org_id(), get_json_body())
        return jsonify({
            'message': 'Trigger created successfully',
            'trigger': trigger.to_dict()
        }), 201

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating trigger: {str(e)}")
        return handle_exception(e, "trigger creation")


@trigger_bp.route('/triggers', methods=['GET'])
def list_triggers():
    """List triggers, optionally filtered by is_active, trigger_type and action_type."""
    try:
        triggers = trigger_service.list_triggers(
            get_org_id(),
            is_active=_parse_bool_arg('is_active'),
            trigger_type=request.args.get('trigger_type'),
            action_type=request.args.get('action_type')
        )
        return jsonify({
            'triggers': [trigger.to_dict() for trigger in triggers],
            'total': len(triggers)
        }), 200

    except EngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        logger.error(f"Error listing triggers: {str(e)}")
        return handle_exception(e, "trigger listing")


@trigger_bp.route('/triggers/<trigger_id>', methods=['GET'])
def get_trigger(trigger_id):
    try:
        trigger = trigger_service.get_trigger(get_org_id(), trigger_id)
        return jsonify({'trigger': trigger.to_dict()}), 200
    except EngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        logger.error(f"Error getting trigger {trigger_id}: {str(e)}")
        return handle_exception(e, "trigger retrieval")


@trigger_bp.route('/triggers/<trigger_id>', methods=['PUT'])
def update_trigger(trigger_id):
    """Partially update a trigger; unspecified fields keep their values."""
    try:
        trigger = trigger_service.update_trigger(get_org_id(), trigger_id, get_json_body())
        return jsonify({
            'message': 'Trigger updated successfully',
            'trigger': trigger.to_dict()
        }), 200

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating trigger {trigger_id}: {str(e)}")
        return handle_exception(e, "trigger update")
