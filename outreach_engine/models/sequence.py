import uuid
from datetime import datetime
from outreach_engine.models import db
from sqlalchemy import JSON


class SequenceTemplate(db.Model):
    __tablename__ = 'sequence_templates'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active')  # draft, active, archived
    skip_weekends = db.Column(db.Boolean, nullable=False, default=True)
    send_window_start = db.Column(db.Integer, nullable=True)  # Local hour, overrides WORKING_HOURS_START
    send_window_end = db.Column(db.Integer, nullable=True)
    pause_on_reply = db.Column(db.Boolean, nullable=False, default=False)
    pause_on_meeting = db.Column(db.Boolean, nullable=False, default=False)
    daily_limit = db.Column(db.Integer, nullable=True)  # Steps sent per UTC day across the template
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    steps = db.relationship('SequenceStep', backref='template', lazy=True,
                            order_by='SequenceStep.step_index', cascade='all, delete-orphan')

    def get_step(self, step_index):
        """Get the step at a given index, or None past the end of the sequence."""
        for step in self.steps:
            if step.step_index == step_index:
                return step
        return None

    def to_dict(self):
        return {
            'id': str(self.id),
            'org_id': str(self.org_id),
            'name': self.name,
            'status': self.status,
            'skip_weekends': self.skip_weekends,
            'send_window_start': self.send_window_start,
            'send_window_end': self.send_window_end,
            'pause_on_reply': self.pause_on_reply,
            'pause_on_meeting': self.pause_on_meeting,
            'daily_limit': self.daily_limit,
            'steps': [step.to_dict() for step in self.steps],
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<SequenceTemplate {self.name}>'


class SequenceStep(db.Model):
    __tablename__ = 'sequence_steps'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    template_id = db.Column(db.String(36), db.ForeignKey('sequence_templates.id'), nullable=False)
    step_index = db.Column(db.Integer, nullable=False)
    wait_before_minutes = db.Column(db.Integer, nullable=False, default=0)
    channel = db.Column(db.String(20), nullable=False, default='email')  # email, task, wait, conditional, webhook, linkedin
    content = db.Column(JSON, nullable=False, default=dict)
    use_timezone_scheduling = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.UniqueConstraint('template_id', 'step_index', name='uq_sequence_step_index'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'template_id': str(self.template_id),
            'step_index': self.step_index,
            'wait_before_minutes': self.wait_before_minutes,
            'channel': self.channel,
            'content': self.content or {},
            'use_timezone_scheduling': self.use_timezone_scheduling
        }

    def __repr__(self):
        return f'<SequenceStep {self.step_index} ({self.channel})>'


class Enrollment(db.Model):
    __tablename__ = 'enrollments'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    lead_id = db.Column(db.String(36), db.ForeignKey('leads.id'), nullable=False)
    template_id = db.Column(db.String(36), db.ForeignKey('sequence_templates.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active')  # active, paused, completed, removed
    current_step = db.Column(db.Integer, nullable=False, default=0)
    variant_id = db.Column(db.String(36), nullable=True)
    branch_name = db.Column(db.String(100), nullable=True)
    source = db.Column(db.String(50), nullable=True)  # manual, trigger, api
    enrolled_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    paused_at = db.Column(db.DateTime, nullable=True)
    paused_reason = db.Column(db.String(255), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    removed_at = db.Column(db.DateTime, nullable=True)
    removed_reason = db.Column(db.String(255), nullable=True)
    last_step_at = db.Column(db.DateTime, nullable=True)
    replies_received = db.Column(db.Integer, nullable=False, default=0)
    meetings_booked = db.Column(db.Integer, nullable=False, default=0)

    template = db.relationship('SequenceTemplate', lazy=True)

    # At most one active enrollment per lead and template
    __table_args__ = (
        db.Index(
            'uq_enrollment_active_lead_template', 'lead_id', 'template_id',
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'org_id': str(self.org_id),
            'lead_id': str(self.lead_id),
            'template_id': str(self.template_id),
            'status': self.status,
            'current_step': self.current_step,
            'variant_id': self.variant_id,
            'branch_name': self.branch_name,
            'source': self.source,
            'enrolled_at': self.enrolled_at.isoformat() if self.enrolled_at else None,
            'paused_at': self.paused_at.isoformat() if self.paused_at else None,
            'paused_reason': self.paused_reason,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'removed_at': self.removed_at.isoformat() if self.removed_at else None,
            'removed_reason': self.removed_reason,
            'last_step_at': self.last_step_at.isoformat() if self.last_step_at else None,
            'replies_received': self.replies_received,
            'meetings_booked': self.meetings_booked
        }

    def __repr__(self):
        return f'<Enrollment {self.lead_id} in {self.template_id} ({self.status})>'
