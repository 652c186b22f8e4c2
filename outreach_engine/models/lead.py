import uuid
from datetime import datetime
from outreach_engine.models import db
from sqlalchemy import JSON


class Lead(db.Model):
    __tablename__ = 'leads'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), db.ForeignKey('organizations.id'), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    company = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    # Location data used for timezone detection
    timezone = db.Column(db.String(64), nullable=True)
    country = db.Column(db.String(2), nullable=True)
    state = db.Column(db.String(10), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(50), nullable=False, default='new')
    stage = db.Column(db.String(50), nullable=True)
    lead_score = db.Column(db.Integer, nullable=True)
    owner_id = db.Column(db.String(36), nullable=True)
    tags = db.Column(JSON, nullable=False, default=list)
    custom_fields = db.Column(JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=datetime.utcnow)

    # Relationships
    enrollments = db.relationship('Enrollment', backref='lead', lazy=True, cascade='all, delete-orphan')

    def filter_context(self):
        """Flat attribute mapping used to evaluate trigger lead filters.

        Custom fields are merged first so that real columns always win on
        name collisions.
        """
        context = dict(self.custom_fields or {})
        for column in self.__table__.columns:
            if column.name == 'custom_fields':
                continue
            context[column.name] = getattr(self, column.name)
        return context

    def to_dict(self):
        return {
            'id': str(self.id),
            'org_id': str(self.org_id),
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'company': self.company,
            'phone': self.phone,
            'timezone': self.timezone,
            'country': self.country,
            'state': self.state,
            'city': self.city,
            'status': self.status,
            'stage': self.stage,
            'lead_score': self.lead_score,
            'owner_id': self.owner_id,
            'tags': list(self.tags or []),
            'custom_fields': dict(self.custom_fields or {}),
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    @property
    def full_name(self):
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        elif self.first_name:
            return self.first_name
        elif self.last_name:
            return self.last_name
        return "Unknown"

    @classmethod
    def find_by_email(cls, org_id: str, email: str):
        """Exact (case-insensitive) email lookup scoped to one organization."""
        if not email:
            return None
        return cls.query.filter(
            cls.org_id == org_id,
            db.func.lower(cls.email) == email.strip().lower()
        ).first()

    def __repr__(self):
        return f'<Lead {self.full_name} ({self.email})>'
