from flask import request, jsonify
from outreach_engine.routes.trigger import trigger_bp
from outreach_engine.services.trigger_engine import triggers as trigger_service
from outreach_engine.utils.error_handling import handle_engine_error, handle_exception, handle_validation_error
from outreach_engine.utils.exceptions import EngineError
from outreach_engine.utils.request_context import get_org_id
import logging

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 500


@trigger_bp.route('/triggers/<trigger_id>/history', methods=['GET'])
def get_trigger_history(trigger_id):
    """Most recent execution log entries for a trigger, newest first."""
    try:
        limit = request.args.get('limit', 100, type=int)
        if limit is None or limit < 1:
            return handle_validation_error("limit must be a positive integer", {'limit': 'must be >= 1'})

        logs = trigger_service.get_trigger_history(get_org_id(), trigger_id, limit=min(limit, MAX_HISTORY_LIMIT))
        return jsonify({
            'trigger_id': trigger_id,
            'history': [log.to_dict() for log in logs],
            'total': len(logs)
        }), 200

    except EngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        logger.error(f"Error getting history for trigger {trigger_id}: {str(e)}")
        return handle_exception(e, "trigger history")
