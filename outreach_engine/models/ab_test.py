import uuid
from datetime import datetime
from outreach_engine.models import db
from sqlalchemy import JSON


class ABTest(db.Model):
    __tablename__ = 'ab_tests'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=False, index=True)
    template_id = db.Column(db.String(36), db.ForeignKey('sequence_templates.id'), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='draft')  # draft, running, paused, completed
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    variants = db.relationship('ABTestVariant', backref='test', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': str(self.id),
            'template_id': str(self.template_id),
            'name': self.name,
            'status': self.status,
            'variants': [variant.to_dict() for variant in self.variants],
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<ABTest {self.name} ({self.status})>'


class ABTestVariant(db.Model):
    __tablename__ = 'ab_test_variants'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    test_id = db.Column(db.String(36), db.ForeignKey('ab_tests.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    weight = db.Column(db.Integer, nullable=False, default=50)
    content_overrides = db.Column(JSON, nullable=False, default=dict)  # Keyed by step index

    def to_dict(self):
        return {
            'id': str(self.id),
            'test_id': str(self.test_id),
            'name': self.name,
            'weight': self.weight,
            'content_overrides': self.content_overrides or {}
        }

    def __repr__(self):
        return f'<ABTestVariant {self.name} weight={self.weight}>'
