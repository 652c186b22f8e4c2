import uuid
from datetime import datetime
from outreach_engine.models import db
from sqlalchemy import JSON


class SuppressionEntry(db.Model):
    __tablename__ = 'suppression_entries'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    lead_id = db.Column(db.String(36), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)  # Stored lower-cased
    domain = db.Column(db.String(255), nullable=True, index=True)
    reason = db.Column(db.String(20), nullable=False)  # unsubscribe, bounce, complaint, competitor, customer, manual, invalid
    source = db.Column(db.String(30), nullable=False, default='manual')  # manual, import, auto, unsubscribe_link, bounce_webhook
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=True)

    def is_expired(self, now=None):
        now = now or datetime.utcnow()
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self):
        return {
            'id': str(self.id),
            'org_id': str(self.org_id),
            'lead_id': self.lead_id,
            'email': self.email,
            'domain': self.domain,
            'reason': self.reason,
            'source': self.source,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None
        }

    def __repr__(self):
        return f'<SuppressionEntry {self.email or self.domain or self.lead_id} ({self.reason})>'


class UnsubscribePreference(db.Model):
    __tablename__ = 'unsubscribe_preferences'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    lead_id = db.Column(db.String(36), db.ForeignKey('leads.id'), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=False)
    all_sequences = db.Column(db.Boolean, nullable=False, default=False)
    marketing_emails = db.Column(db.Boolean, nullable=False, default=True)
    transactional_emails = db.Column(db.Boolean, nullable=False, default=True)
    email_enabled = db.Column(db.Boolean, nullable=False, default=True)
    max_emails_per_week = db.Column(db.Integer, nullable=True)
    preferred_send_window = db.Column(JSON, nullable=True)  # {"start": 10, "end": 15} local hours
    excluded_template_ids = db.Column(JSON, nullable=False, default=list)
    unsubscribe_token = db.Column(db.String(64), nullable=False, unique=True)
    token_expires_at = db.Column(db.DateTime, nullable=True)
    token_used_at = db.Column(db.DateTime, nullable=True)
    unsubscribe_reason = db.Column(db.String(255), nullable=True)
    unsubscribe_feedback = db.Column(db.Text, nullable=True)
    last_updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': str(self.id),
            'lead_id': str(self.lead_id),
            'email': self.email,
            'all_sequences': self.all_sequences,
            'marketing_emails': self.marketing_emails,
            'transactional_emails': self.transactional_emails,
            'email_enabled': self.email_enabled,
            'max_emails_per_week': self.max_emails_per_week,
            'preferred_send_window': self.preferred_send_window,
            'excluded_template_ids': list(self.excluded_template_ids or []),
            'unsubscribe_reason': self.unsubscribe_reason,
            'last_updated_at': self.last_updated_at.isoformat() if self.last_updated_at else None
        }

    def __repr__(self):
        return f'<UnsubscribePreference {self.email}>'
