import uuid
from datetime import datetime
from outreach_engine.models import db
from sqlalchemy import JSON


class BehavioralEvent(db.Model):
    __tablename__ = 'behavioral_events'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    lead_id = db.Column(db.String(36), db.ForeignKey('leads.id'), nullable=True, index=True)
    contact_email = db.Column(db.String(255), nullable=True)
    session_id = db.Column(db.String(255), nullable=True)
    event_type = db.Column(db.String(100), nullable=False)
    # Event types are free-form: email_open, email_click, page_visit, form_submission, etc.
    event_data = db.Column(JSON, nullable=False, default=dict)
    source = db.Column(db.String(50), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    processed = db.Column(db.Boolean, nullable=False, default=False)
    processed_at = db.Column(db.DateTime, nullable=True)
    matched_trigger_ids = db.Column(JSON, nullable=False, default=list)

    __table_args__ = (
        db.Index('ix_behavioral_events_org_type', 'org_id', 'event_type'),
    )

    def to_dict(self):
        return {
            'id': str(self.id),
            'org_id': str(self.org_id),
            'lead_id': str(self.lead_id) if self.lead_id else None,
            'contact_email': self.contact_email,
            'session_id': self.session_id,
            'event_type': self.event_type,
            'event_data': self.event_data,
            'source': self.source,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'processed': self.processed,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
            'matched_trigger_ids': list(self.matched_trigger_ids or [])
        }

    def __repr__(self):
        return f'<BehavioralEvent {self.event_type} for Lead {self.lead_id}>'
