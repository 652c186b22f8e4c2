import uuid
from datetime import datetime
from outreach_engine.models import db
from sqlalchemy import JSON, UniqueConstraint


class Trigger(db.Model):
    __tablename__ = 'triggers'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    trigger_type = db.Column(db.String(100), nullable=False)
    conditions = db.Column(JSON, nullable=False, default=dict)
    lead_filters = db.Column(JSON, nullable=True)
    action_type = db.Column(db.String(50), nullable=False)
    action_config = db.Column(JSON, nullable=False, default=dict)
    delay_minutes = db.Column(db.Integer, nullable=False, default=0)
    cooldown_hours = db.Column(db.Integer, nullable=False, default=24)
    max_triggers_per_lead = db.Column(db.Integer, nullable=True)
    max_triggers_total = db.Column(db.Integer, nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=100)
    total_triggers = db.Column(db.Integer, nullable=False, default=0)
    last_triggered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=datetime.utcnow)

    # Trigger names are unique within an organization
    __table_args__ = (
        UniqueConstraint('org_id', 'name', name='uq_trigger_org_name'),
        db.Index('ix_triggers_org_type_active', 'org_id', 'trigger_type', 'is_active'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'org_id': str(self.org_id),
            'name': self.name,
            'description': self.description,
            'is_active': self.is_active,
            'trigger_type': self.trigger_type,
            'conditions': self.conditions or {},
            'lead_filters': self.lead_filters,
            'action_type': self.action_type,
            'action_config': self.action_config or {},
            'delay_minutes': self.delay_minutes,
            'cooldown_hours': self.cooldown_hours,
            'max_triggers_per_lead': self.max_triggers_per_lead,
            'max_triggers_total': self.max_triggers_total,
            'priority': self.priority,
            'total_triggers': self.total_triggers,
            'last_triggered_at': self.last_triggered_at.isoformat() if self.last_triggered_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<Trigger {self.name} ({self.trigger_type} -> {self.action_type})>'


class TriggerExecutionLog(db.Model):
    """Append-only audit of every trigger outcome; cooldowns are derived from it."""
    __tablename__ = 'trigger_execution_log'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    trigger_id = db.Column(db.String(36), db.ForeignKey('triggers.id'), nullable=False)
    event_id = db.Column(db.String(36), db.ForeignKey('behavioral_events.id'), nullable=True)
    lead_id = db.Column(db.String(36), nullable=True)
    action_type = db.Column(db.String(50), nullable=False)
    action_config = db.Column(JSON, nullable=True)  # Snapshot at execution time
    status = db.Column(db.String(20), nullable=False)  # scheduled, success, failed, skipped
    result_data = db.Column(JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_trigger_log_trigger_lead_status', 'trigger_id', 'lead_id', 'status', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'trigger_id': str(self.trigger_id),
            'event_id': str(self.event_id) if self.event_id else None,
            'lead_id': str(self.lead_id) if self.lead_id else None,
            'action_type': self.action_type,
            'action_config': self.action_config,
            'status': self.status,
            'result_data': self.result_data,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<TriggerExecutionLog {self.status} trigger={self.trigger_id} lead={self.lead_id}>'
