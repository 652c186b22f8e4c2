import uuid
from datetime import datetime
from outreach_engine.models import db
from sqlalchemy import JSON


class ScheduledExecution(db.Model):
    """A unit of due work picked up by the sweep: a sequence step or a delayed trigger action."""
    __tablename__ = 'scheduled_executions'

    KIND_SEQUENCE_STEP = 'sequence_step'
    KIND_TRIGGER_ACTION = 'trigger_action'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    kind = db.Column(db.String(20), nullable=False, default=KIND_SEQUENCE_STEP)
    enrollment_id = db.Column(db.String(36), db.ForeignKey('enrollments.id'), nullable=True)
    step_index = db.Column(db.Integer, nullable=True)
    channel = db.Column(db.String(20), nullable=True)  # Step channel, used for weekly email caps
    trigger_id = db.Column(db.String(36), db.ForeignKey('triggers.id'), nullable=True)
    event_id = db.Column(db.String(36), db.ForeignKey('behavioral_events.id'), nullable=True)
    lead_id = db.Column(db.String(36), nullable=True)
    due_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, in_progress, sent, skipped, failed
    claimed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    result_data = db.Column(JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_scheduled_executions_status_due', 'status', 'due_at'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'org_id': str(self.org_id),
            'kind': self.kind,
            'enrollment_id': self.enrollment_id,
            'step_index': self.step_index,
            'channel': self.channel,
            'trigger_id': self.trigger_id,
            'event_id': self.event_id,
            'lead_id': self.lead_id,
            'due_at': self.due_at.isoformat() if self.due_at else None,
            'status': self.status,
            'claimed_at': self.claimed_at.isoformat() if self.claimed_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error_message': self.error_message,
            'result_data': self.result_data,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<ScheduledExecution {self.kind} due {self.due_at} ({self.status})>'
