from flask import Blueprint, request, jsonify
from outreach_engine.extensions import db
from outreach_engine.services.trigger_engine import TriggerEngine
from outreach_engine.utils.error_handling import (
    handle_engine_error,
    handle_exception,
    handle_validation_error
)
from outreach_engine.utils.exceptions import EngineError
from outreach_engine.utils.request_context import get_json_body, get_org_id
import logging

logger = logging.getLogger(__name__)

event_bp = Blueprint('event', __name__)

MAX_EVENTS_LIMIT = 200


@event_bp.route('/events', methods=['POST'])
def track_events():
    """
    Record one behavioral event or a batch and evaluate triggers synchronously.

    Accepts either a single event object or ``{"events": [...]}``.
    """
    try:
        org_id = get_org_id()
        data = get_json_body()

        if isinstance(data, dict) and 'events' in data:
            payloads = data['events']
        else:
            payloads = [data]

        event_ids = TriggerEngine().track_events(org_id, payloads)
        return jsonify({
            'message': f'Tracked {len(event_ids)} event(s)',
            'event_ids': event_ids
        }), 201

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error tracking events: {str(e)}")
        return handle_exception(e, "event tracking")


@event_bp.route('/events', methods=['GET'])
def list_lead_events():
    """Recent events for one lead, newest first."""
    try:
        org_id = get_org_id()
        lead_id = request.args.get('lead_id')
        if not lead_id:
            return handle_validation_error("lead_id query parameter is required", {'lead_id': 'required'})

        limit = request.args.get('limit', 50, type=int)
        if limit is None or limit < 1:
            return handle_validation_error("limit must be a positive integer", {'limit': 'must be >= 1'})

        events = TriggerEngine().get_lead_events(org_id, lead_id, limit=min(limit, MAX_EVENTS_LIMIT))
        return jsonify({
            'events': [event.to_dict() for event in events],
            'total': len(events)
        }), 200

    except EngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        logger.error(f"Error listing events: {str(e)}")
        return handle_exception(e, "event listing")
