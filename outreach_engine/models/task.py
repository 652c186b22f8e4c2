import uuid
from datetime import datetime
from outreach_engine.models import db


class Task(db.Model):
    """CRM activity created by triggers and task steps."""
    __tablename__ = 'tasks'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    lead_id = db.Column(db.String(36), db.ForeignKey('leads.id'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_at = db.Column(db.DateTime, nullable=False)
    priority = db.Column(db.String(20), nullable=False, default='medium')  # low, medium, high, urgent
    status = db.Column(db.String(20), nullable=False, default='open')
    assigned_to = db.Column(db.String(36), nullable=True)
    source = db.Column(db.String(50), nullable=True)  # behavioral_trigger, sequence_step
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': str(self.id),
            'lead_id': str(self.lead_id),
            'title': self.title,
            'description': self.description,
            'due_at': self.due_at.isoformat() if self.due_at else None,
            'priority': self.priority,
            'status': self.status,
            'assigned_to': self.assigned_to,
            'source': self.source,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<Task {self.title} for Lead {self.lead_id}>'
