from datetime import datetime
from flask import Blueprint, request, jsonify
from outreach_engine.extensions import db
from outreach_engine.services import suppression as suppression_service
from outreach_engine.utils.error_handling import (
    handle_engine_error,
    handle_exception,
    handle_validation_error,
    validate_required_fields
)
from outreach_engine.utils.exceptions import EngineError
from outreach_engine.utils.request_context import get_json_body, get_org_id
import logging

logger = logging.getLogger(__name__)

suppression_bp = Blueprint('suppression', __name__)


def _parse_expires_at(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        return 'invalid'


@suppression_bp.route('/suppressions', methods=['POST'])
def create_suppression():
    """Add a suppression entry, or import a list of them."""
    try:
        org_id = get_org_id()
        data = get_json_body()

        if isinstance(data, list):
            result = suppression_service.bulk_import(org_id, data)
            return jsonify(result), 201

        validation_error = validate_required_fields(data, ['reason'])
        if validation_error:
            return validation_error

        expires_at = _parse_expires_at(data.get('expires_at'))
        if expires_at == 'invalid':
            return handle_validation_error("expires_at must be an ISO-8601 timestamp",
                                           {'expires_at': 'invalid timestamp'})

        entry = suppression_service.add_suppression(
            org_id,
            data['reason'],
            source=data.get('source') or 'manual',
            email=data.get('email'),
            domain=data.get('domain'),
            lead_id=data.get('lead_id'),
            notes=data.get('notes'),
            expires_at=expires_at
        )
        return jsonify({
            'message': 'Suppression added successfully',
            'suppression': entry.to_dict()
        }), 201

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding suppression: {str(e)}")
        return handle_exception(e, "suppression creation")


@suppression_bp.route('/suppressions', methods=['GET'])
def list_suppressions():
    try:
        entries = suppression_service.list_suppressions(
            get_org_id(),
            reason=request.args.get('reason'),
            source=request.args.get('source'),
            search=request.args.get('search'),
            limit=min(request.args.get('limit', 100, type=int) or 100, 1000)
        )
        return jsonify({
            'suppressions': [entry.to_dict() for entry in entries],
            'total': len(entries)
        }), 200

    except EngineError as e:
        return handle_engine_error(e)
    except Exception as e:
        logger.error(f"Error listing suppressions: {str(e)}")
        return handle_exception(e, "suppression listing")


@suppression_bp.route('/suppressions/bounce', methods=['POST'])
def record_bounce():
    """Record a bounce reported by the email provider. Soft bounces are ignored."""
    try:
        org_id = get_org_id()
        data = get_json_body()

        validation_error = validate_required_fields(data, ['email'])
        if validation_error:
            return validation_error

        entry = suppression_service.handle_bounce(
            org_id,
            data['email'],
            bounce_type=data.get('bounce_type') or 'hard',
            notes=data.get('notes')
        )
        if entry is None:
            return jsonify({'message': 'Soft bounce ignored', 'suppressed': False}), 200

        return jsonify({
            'message': 'Hard bounce recorded',
            'suppressed': True,
            'suppression': entry.to_dict()
        }), 201

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error recording bounce: {str(e)}")
        return handle_exception(e, "bounce handling")


@suppression_bp.route('/suppressions/complaint', methods=['POST'])
def record_complaint():
    try:
        org_id = get_org_id()
        data = get_json_body()

        validation_error = validate_required_fields(data, ['email'])
        if validation_error:
            return validation_error

        entry = suppression_service.handle_complaint(org_id, data['email'], notes=data.get('notes'))
        return jsonify({
            'message': 'Complaint recorded',
            'suppressed': True,
            'suppression': entry.to_dict()
        }), 201

    except EngineError as e:
        db.session.rollback()
        return handle_engine_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error recording complaint: {str(e)}")
        return handle_exception(e, "complaint handling")
