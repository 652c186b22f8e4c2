"""
Core scheduler functionality.

This module contains the main scheduler class and core functionality:
- SweepScheduler class
- Thread management
- Main processing loop
"""

import logging
import threading

from outreach_engine.services.sequence_engine import SequenceEngine
from outreach_engine.services.trigger_engine import TriggerEngine

logger = logging.getLogger(__name__)

# Global scheduler instance
_sweep_scheduler = None


def get_sweep_scheduler():
    """Get the global scheduler instance."""
    global _sweep_scheduler
    if _sweep_scheduler is None:
        _sweep_scheduler = SweepScheduler()
    return _sweep_scheduler


class SweepScheduler:
    """Background sweep that executes due sequence steps and delayed trigger actions."""

    def __init__(self, app=None, sequence_engine=None, trigger_engine=None):
        self.app = app
        self.sequence_engine = sequence_engine  # Initialize lazily
        self.trigger_engine = trigger_engine
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()

        self.interval_seconds = 60
        self.batch_size = 50
        self.claim_timeout_minutes = 30

        if app is not None:
            self.init_app(app)

    def _get_sequence_engine(self):
        """Get sequence engine instance (lazy initialization)."""
        if self.sequence_engine is None:
            self.sequence_engine = SequenceEngine()
        return self.sequence_engine

    def _get_trigger_engine(self):
        if self.trigger_engine is None:
            self.trigger_engine = TriggerEngine()
        return self.trigger_engine

    def init_app(self, app):
        """Initialize the scheduler with the Flask app."""
        self.app = app
        self.interval_seconds = app.config.get('SWEEP_INTERVAL_SECONDS', 60)
        self.batch_size = app.config.get('SWEEP_BATCH_SIZE', 50)
        self.claim_timeout_minutes = app.config.get('CLAIM_TIMEOUT_MINUTES', 30)
        logger.info(f"Sweep scheduler initialized (every {self.interval_seconds}s, batch {self.batch_size})")

    def start(self):
        """Start the background processing thread."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._process_loop, daemon=True)
        self.thread.start()
        logger.info("Sweep scheduler started successfully")

    def stop(self):
        """Stop the background processing thread."""
        if not self.running:
            logger.info("Scheduler is already stopped")
            return

        logger.info("Stopping scheduler...")
        self.running = False
        self._stop_event.set()

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=30)
            if self.thread.is_alive():
                logger.warning("Scheduler thread did not terminate within 30 seconds")

        logger.info("Scheduler stopped")

    def _process_loop(self):
        """Main processing loop for the scheduler."""
        logger.info("Starting scheduler processing loop")

        while self.running:
            try:
                with self.app.app_context():
                    self.process_scheduled_steps()
            except Exception as e:
                logger.error(f"Error in scheduler processing loop: {str(e)}")

            self._stop_event.wait(self.interval_seconds)

        logger.info("Scheduler processing loop ended")

    # Import other modules for functionality
    from .step_runner import (
        process_scheduled_steps, _claim, _finish, _expire_stale_claims, _mark_failed,
        _run_trigger_action, _run_sequence_step, _defer
    )
