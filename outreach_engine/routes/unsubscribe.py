"""
Public unsubscribe page.

Reached from the link in every sequence email, so it takes no organization
header: the token alone identifies the lead. Browsers get an HTML form;
JSON clients get the preference payload.
"""

from flask import Blueprint, request, jsonify, render_template
from outreach_engine.extensions import db
from outreach_engine.models import SequenceTemplate
from outreach_engine.services import suppression as suppression_service
from outreach_engine.utils.error_handling import handle_engine_error, handle_exception
from outreach_engine.utils.exceptions import EngineError, ValidationError
import logging

logger = logging.getLogger(__name__)

unsubscribe_bp = Blueprint('unsubscribe', __name__)

PREFERENCE_FLAGS = ('all_sequences', 'marketing_emails', 'transactional_emails', 'email_enabled')


def _wants_json():
    return request.is_json or request.accept_mimetypes.best == 'application/json'


def _form_to_preferences(form):
    """Translate the HTML form into the preference update payload."""
    data = {flag: flag in form for flag in PREFERENCE_FLAGS}
    data['max_emails_per_week'] = form.get('max_emails_per_week') or None
    data['excluded_template_ids'] = form.getlist('excluded_template_ids')
    data['unsubscribe_reason'] = form.get('unsubscribe_reason')
    data['unsubscribe_feedback'] = form.get('unsubscribe_feedback')

    start, end = form.get('send_window_start'), form.get('send_window_end')
    if start or end:
        try:
            data['preferred_send_window'] = {'start': int(start), 'end': int(end)}
        except (TypeError, ValueError):
            raise ValidationError("Invalid preferences",
                                  {'preferred_send_window': 'start and end must be hours with start < end'})
    else:
        data['preferred_send_window'] = None
    return data


def _render_error(error, status_code):
    if _wants_json():
        return handle_engine_error(error)
    if status_code == 404 or 'token' in (error.details or {}):
        title = 'Invalid or expired link'
    else:
        title = 'Could not save your preferences'
    return render_template('unsubscribe_error.html', title=title, message=error.message), status_code


@unsubscribe_bp.route('/unsubscribe/<token>', methods=['GET'])
def show_preferences(token):
    try:
        preference = suppression_service.get_preference_by_token(token)
        if _wants_json():
            return jsonify({'preferences': preference.to_dict()}), 200

        templates = SequenceTemplate.query.filter_by(org_id=preference.org_id).order_by(
            SequenceTemplate.name.asc()
        ).all()
        return render_template('unsubscribe.html', preference=preference, token=token,
                               templates=templates), 200

    except EngineError as e:
        return _render_error(e, 404 if e.code == 'NOT_FOUND' else 400)
    except Exception as e:
        logger.error(f"Error loading unsubscribe page: {str(e)}")
        return handle_exception(e, "loading unsubscribe preferences")


@unsubscribe_bp.route('/unsubscribe/<token>', methods=['POST'])
def update_preferences(token):
    """Apply the submitted preferences. The link stops working afterwards."""
    try:
        preference = suppression_service.get_preference_by_token(token)
        if request.is_json:
            data = request.get_json(silent=True) or {}
            if not isinstance(data, dict):
                raise ValidationError("Invalid preferences", {'body': 'must be a JSON object'})
        else:
            data = _form_to_preferences(request.form)

        preference = suppression_service.apply_preference_update(preference, data)
        if _wants_json():
            return jsonify({
                'message': 'Preferences updated successfully',
                'preferences': preference.to_dict()
            }), 200
        return render_template('unsubscribe_success.html', preference=preference), 200

    except EngineError as e:
        db.session.rollback()
        return _render_error(e, 404 if e.code == 'NOT_FOUND' else 400)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating unsubscribe preferences: {str(e)}")
        return handle_exception(e, "updating unsubscribe preferences")
