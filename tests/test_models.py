"""
Unit tests for database models.

This module tests model serialization, lead helpers, template step lookup
and the one-active-enrollment index.
"""

import pytest
from datetime import timedelta
from sqlalchemy.exc import IntegrityError

from outreach_engine.models import (
    ABTest, ABTestVariant, Enrollment, Lead, ScheduledExecution, SuppressionEntry, Trigger
)
from outreach_engine.services.sequence_engine import SequenceEngine

from tests.conftest import MONDAY_10AM


class TestLead:
    """Test Lead model."""

    def test_to_dict(self, sample_lead):
        data = sample_lead.to_dict()
        assert data['email'] == 'jane@acme.com'
        assert data['tags'] == []
        assert data['custom_fields'] == {'industry': 'saas'}
        assert data['created_at'] is not None

    def test_full_name(self, sample_org):
        assert Lead(org_id=sample_org.id, first_name='Jane', last_name='Doe').full_name == 'Jane Doe'
        assert Lead(org_id=sample_org.id, last_name='Doe').full_name == 'Doe'
        assert Lead(org_id=sample_org.id).full_name == 'Unknown'

    def test_repr(self, sample_lead):
        assert repr(sample_lead) == '<Lead Jane Doe (jane@acme.com)>'

    def test_filter_context_columns_win(self, db_session, sample_lead):
        sample_lead.custom_fields = {'industry': 'saas', 'status': 'spoofed'}
        db_session.commit()

        context = sample_lead.filter_context()
        assert context['industry'] == 'saas'
        assert context['status'] == 'new'
        assert context['lead_score'] == 40
        assert 'custom_fields' not in context

    def test_find_by_email(self, sample_org, other_org, sample_lead):
        assert Lead.find_by_email(sample_org.id, '  JANE@acme.com ').id == sample_lead.id
        assert Lead.find_by_email(other_org.id, 'jane@acme.com') is None
        assert Lead.find_by_email(sample_org.id, None) is None


class TestSequenceModels:

    def test_get_step(self, sample_template):
        assert sample_template.get_step(1).channel == 'task'
        assert sample_template.get_step(3) is None

    def test_template_to_dict_orders_steps(self, sample_template):
        data = sample_template.to_dict()
        assert [step['step_index'] for step in data['steps']] == [0, 1, 2]
        assert data['skip_weekends'] is True

    def test_one_active_enrollment_per_lead(self, db_session, sample_org, sample_lead, sample_template):
        for _ in range(2):
            db_session.add(Enrollment(org_id=sample_org.id, lead_id=sample_lead.id,
                                      template_id=sample_template.id, status='active'))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_finished_enrollments_do_not_conflict(self, db_session, sample_org, sample_lead, sample_template):
        db_session.add_all([
            Enrollment(org_id=sample_org.id, lead_id=sample_lead.id, template_id=sample_template.id, status='removed'),
            Enrollment(org_id=sample_org.id, lead_id=sample_lead.id, template_id=sample_template.id, status='completed'),
            Enrollment(org_id=sample_org.id, lead_id=sample_lead.id, template_id=sample_template.id, status='active'),
        ])
        db_session.commit()
        assert Enrollment.query.count() == 3

    def test_enrollment_to_dict(self, db_session, sample_org, sample_lead, sample_template):
        enrollment = Enrollment(org_id=sample_org.id, lead_id=sample_lead.id, template_id=sample_template.id,
                                enrolled_at=MONDAY_10AM)
        db_session.add(enrollment)
        db_session.commit()

        data = enrollment.to_dict()
        assert data['status'] == 'active'
        assert data['current_step'] == 0
        assert data['enrolled_at'] == '2024-01-15T10:00:00'
        assert data['paused_at'] is None
        assert enrollment.lead.id == sample_lead.id


class TestOtherModels:

    def test_trigger_defaults(self, sample_trigger):
        data = sample_trigger.to_dict()
        assert data['is_active'] is True
        assert data['delay_minutes'] == 0
        assert data['total_triggers'] == 0
        assert repr(sample_trigger) == '<Trigger Pricing page visit (page_visit -> add_tag)>'

    def test_trigger_name_unique_per_org(self, db_session, sample_org, other_org, sample_trigger):
        db_session.add(Trigger(org_id=other_org.id, name=sample_trigger.name, trigger_type='page_visit',
                               action_type='add_tag'))
        db_session.commit()

        db_session.add(Trigger(org_id=sample_org.id, name=sample_trigger.name, trigger_type='email_open',
                               action_type='add_tag'))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_suppression_expiry(self):
        entry = SuppressionEntry(org_id='org', reason='manual', expires_at=MONDAY_10AM)
        assert not entry.is_expired(MONDAY_10AM - timedelta(seconds=1))
        assert entry.is_expired(MONDAY_10AM)
        assert not SuppressionEntry(org_id='org', reason='manual').is_expired(MONDAY_10AM)

    def test_scheduled_execution_to_dict(self, db_session, sample_org):
        execution = ScheduledExecution(org_id=sample_org.id, kind=ScheduledExecution.KIND_TRIGGER_ACTION,
                                       due_at=MONDAY_10AM)
        db_session.add(execution)
        db_session.commit()

        data = execution.to_dict()
        assert data['status'] == 'pending'
        assert data['due_at'] == '2024-01-15T10:00:00'
        assert data['enrollment_id'] is None


class TestMessageContent:
    """Personalization and A/B content overrides applied to step content."""

    @pytest.fixture
    def engine(self, app):
        return SequenceEngine()

    def test_placeholders(self, engine, sample_lead):
        message = engine._format_message('Hi {First_Name} at {company} ({industry}){unknown}', sample_lead)
        assert message == 'Hi Jane at Acme (saas){unknown}'

    def test_html_to_text(self, engine):
        assert engine._html_to_text('<p>Hello &amp; welcome</p><p>Bye<br>now</p>') == 'Hello & welcome\nBye\nnow'

    def test_variant_overrides_step_content(self, engine, db_session, sample_org, sample_lead, sample_template):
        test = ABTest(org_id=sample_org.id, template_id=sample_template.id, name='Subject', status='running')
        db_session.add(test)
        db_session.flush()
        variant = ABTestVariant(test_id=test.id, name='B', weight=100,
                                content_overrides={'0': {'subject': 'Quick question, {first_name}'}})
        db_session.add(variant)
        db_session.commit()

        enrollment = Enrollment(org_id=sample_org.id, lead_id=sample_lead.id, template_id=sample_template.id,
                                variant_id=variant.id)
        step = sample_template.get_step(0)

        content = engine._step_content(step, enrollment)
        assert content['subject'] == 'Quick question, {first_name}'
        assert content['body_html'] == '<p>Hello from {company}</p>'
        assert engine._step_content(sample_template.get_step(1), enrollment)['title'] == 'Call {first_name}'
