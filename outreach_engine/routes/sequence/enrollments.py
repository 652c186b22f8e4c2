"""
Enrollment operations for sequences.

This module contains functionality for:
- Enrolling a lead into a sequence template
- Pausing, resuming and removing enrollments
"""

import logging
from flask import jsonify, request

from outreach_engine.extensions import db
from outreach_engine.services.sequence_engine import SequenceEngine
from outreach_engine.utils.error_handling import (
    handle_engine_error, handle_exception, handle_validation_error, validate_required_fields
)
from outreach_engine.utils.exceptions import EngineError
from outreach_engine.utils.request_context import get_json_body, get_org_id

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp

ENROLLMENT_ACTIONS = ('pause', 'resume', 'remove')


@sequence_bp.route('/sequences/enrollments', methods=['POST'])
def create_enrollment():
    """Enroll a lead into a sequence template."""
    try:
        org_id = get_org_id()
        data = get_json_body()

        error_response = validate_required_fields(data, ['lead_id', 'template_id'])
        if error_response:
            return error_response

        result = SequenceEngine().enroll(
            org_id,
            data['lead_id'],
            data['template_id'],
            source=data.get('source') or 'api'
        )

        status_code = 201 if result['status'] == 'enrolled' else 200
        return jsonify(result), status_code

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating enrollment: {str(e)}")
        return handle_exception(e, "creating enrollment")


@sequence_bp.route('/sequences/enrollments/<enrollment_id>', methods=['GET'])
def get_enrollment(enrollment_id):
    try:
        enrollment = SequenceEngine().get_enrollment(get_org_id(), enrollment_id)
        return jsonify({'enrollment': enrollment.to_dict()}), 200
    except EngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        logger.error(f"Error getting enrollment {enrollment_id}: {str(e)}")
        return handle_exception(e, "getting enrollment")


@sequence_bp.route('/sequences/enrollments/<enrollment_id>/<action>', methods=['POST'])
def update_enrollment_status(enrollment_id, action):
    """Pause, resume or remove an enrollment."""
    if action not in ENROLLMENT_ACTIONS:
        return handle_validation_error(f"Unknown enrollment action: {action}",
                                       {'action': f"must be one of {', '.join(ENROLLMENT_ACTIONS)}"})
    try:
        org_id = get_org_id()
        data = request.get_json(silent=True) or {}
        engine = SequenceEngine()
        enrollment = engine.get_enrollment(org_id, enrollment_id)

        if action == 'pause':
            enrollment = engine.pause(enrollment, reason=data.get('reason') or 'Paused manually')
        elif action == 'resume':
            enrollment = engine.resume(enrollment)
        else:
            enrollment = engine.remove(enrollment, reason=data.get('reason') or 'Removed manually')

        return jsonify({
            'message': f'Enrollment {action} successful',
            'enrollment': enrollment.to_dict()
        }), 200

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error during enrollment {action} for {enrollment_id}: {str(e)}")
        return handle_exception(e, f"enrollment {action}")
