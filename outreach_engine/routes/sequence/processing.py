"""
Sweep entry point for an external cron.

The same sweep runs in the background thread when START_SCHEDULER is on.
"""

import hmac
import logging
from flask import current_app, jsonify, request

from outreach_engine.extensions import db
from outreach_engine.services.scheduler import get_sweep_scheduler
from outreach_engine.utils.error_handling import handle_exception, handle_unauthorized_error

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp

SCHEDULER_SECRET_HEADER = 'X-Scheduler-Secret'


@sequence_bp.route('/sequences/process', methods=['POST'])
def process_sequences():
    """Execute every due sequence step and delayed trigger action."""
    secret = current_app.config.get('SCHEDULER_SECRET')
    if secret and not hmac.compare_digest(request.headers.get(SCHEDULER_SECRET_HEADER, ''), secret):
        logger.warning("Rejected sweep request with an invalid scheduler secret")
        return handle_unauthorized_error("Invalid scheduler secret")

    try:
        results = get_sweep_scheduler().process_scheduled_steps()
        return jsonify(results), 200
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error running sequence sweep: {str(e)}")
        return handle_exception(e, "processing sequences")
