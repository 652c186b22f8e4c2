"""
Unit tests for trigger action dispatch.

Triggers are built directly (bypassing definition validation) so that each
action handler can be exercised, including configs that only fail at
dispatch time.
"""

import pytest
from datetime import datetime, timedelta

from outreach_engine.models import (
    BehavioralEvent, Enrollment, Lead, ScheduledExecution, Task, Trigger, TriggerExecutionLog
)
from outreach_engine.services import suppression
from outreach_engine.services.sequence_engine import SequenceEngine
from outreach_engine.services.trigger_engine.action_dispatcher import ActionDispatcher, validate_action_config

from tests.conftest import MONDAY_10AM

ALLOWED_FIELDS = ['status', 'stage', 'intent_level']


@pytest.fixture
def dispatcher(app):
    return ActionDispatcher()


@pytest.fixture
def event(db_session, sample_org, sample_lead):
    event = BehavioralEvent(
        org_id=sample_org.id,
        lead_id=sample_lead.id,
        event_type='page_visit',
        event_data={'page_url': 'https://acme.com/pricing'},
        created_at=MONDAY_10AM
    )
    db_session.add(event)
    db_session.commit()
    return event


@pytest.fixture
def make_trigger(db_session, sample_org):
    def _make(action_type, action_config, **extra):
        trigger = Trigger(
            org_id=sample_org.id,
            name=f"{action_type} trigger",
            trigger_type='page_visit',
            conditions={},
            action_type=action_type,
            action_config=action_config,
            **extra
        )
        db_session.add(trigger)
        db_session.commit()
        return trigger
    return _make


def _only_log(trigger_id):
    return TriggerExecutionLog.query.filter_by(trigger_id=trigger_id).one()


class TestLeadActions:

    def test_add_tags_without_duplicates(self, dispatcher, db_session, make_trigger, event, sample_lead):
        sample_lead.tags = ['vip']
        db_session.commit()
        trigger = make_trigger('add_tag', {'tags': ['vip', 'hot']})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'success'
        assert Lead.query.get(sample_lead.id).tags == ['vip', 'hot']
        assert _only_log(trigger.id).status == 'success'
        assert Trigger.query.get(trigger.id).total_triggers == 1

    def test_update_field_columns_and_custom_fields(self, dispatcher, make_trigger, event, sample_lead):
        trigger = make_trigger('update_field', {'fields': {'stage': 'engaged', 'intent_level': 'high'}})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['result_data'] == {'updated_fields': ['intent_level', 'stage']}
        lead = Lead.query.get(sample_lead.id)
        assert lead.stage == 'engaged'
        assert lead.custom_fields == {'industry': 'saas', 'intent_level': 'high'}

    def test_update_field_rechecks_allow_list(self, dispatcher, make_trigger, event, sample_lead):
        trigger = make_trigger('update_field', {'field': 'email', 'value': 'attacker@example.com'})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'failed'
        assert 'email' in outcome['message']
        assert Lead.query.get(sample_lead.id).email == 'jane@acme.com'
        assert _only_log(trigger.id).status == 'failed'
        assert Trigger.query.get(trigger.id).total_triggers == 0

    def test_create_task_defaults(self, dispatcher, make_trigger, event, sample_lead):
        trigger = make_trigger('create_task', {})

        dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        task = Task.query.one()
        assert task.title == 'Follow up on behavioral trigger'
        assert task.priority == 'medium'
        assert task.due_at == MONDAY_10AM + timedelta(hours=24)
        assert task.source == 'behavioral_trigger'
        assert task.lead_id == sample_lead.id

    def test_create_task_with_due_date(self, dispatcher, make_trigger, event):
        trigger = make_trigger('create_task', {'title': 'Call now', 'priority': 'urgent',
                                               'due_date': '2024-01-15T12:00:00-05:00'})

        dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        task = Task.query.one()
        assert task.due_at == datetime(2024, 1, 15, 17, 0)
        assert task.priority == 'urgent'

    def test_lead_action_without_lead_fails(self, dispatcher, db_session, make_trigger, sample_org):
        anonymous = BehavioralEvent(org_id=sample_org.id, event_type='page_visit', event_data={})
        db_session.add(anonymous)
        db_session.commit()
        trigger = make_trigger('add_tag', {'tag': 'hot'})

        outcome = dispatcher.dispatch(trigger, anonymous, now=MONDAY_10AM)

        assert outcome['status'] == 'failed'
        assert 'Lead not found' in outcome['message']


class TestSequenceActions:
    """Test actions that drive the lead's enrollment."""

    @pytest.fixture
    def enrollment_id(self, app, sample_org, sample_lead, sample_template):
        result = SequenceEngine().enroll(sample_org.id, sample_lead.id, sample_template.id, now=MONDAY_10AM)
        return result['enrollment']['id']

    def test_enroll_in_sequence(self, dispatcher, make_trigger, event, sample_template):
        trigger = make_trigger('enroll_in_sequence', {'template_id': sample_template.id})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'success'
        enrollment = Enrollment.query.get(outcome['result_data']['enrollment_id'])
        assert enrollment.source == 'behavioral_trigger'

    def test_enroll_suppressed_lead_is_skipped(self, dispatcher, make_trigger, event, sample_org, sample_lead,
                                               sample_template):
        suppression.add_suppression(sample_org.id, 'bounce', email=sample_lead.email)
        trigger = make_trigger('enroll_in_sequence', {'sequence_id': sample_template.id})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'skipped'
        assert 'bounce' in outcome['message']
        assert Enrollment.query.count() == 0
        assert Trigger.query.get(trigger.id).total_triggers == 0

    def test_pause_and_resume(self, dispatcher, make_trigger, event, enrollment_id):
        pause = make_trigger('pause_sequence', {})
        resume = make_trigger('resume_sequence', {})

        dispatcher.dispatch(pause, event, now=MONDAY_10AM)
        enrollment = Enrollment.query.get(enrollment_id)
        assert enrollment.status == 'paused'
        assert enrollment.paused_reason == 'Behavioral trigger'

        dispatcher.dispatch(resume, event, now=MONDAY_10AM + timedelta(hours=1))
        assert Enrollment.query.get(enrollment_id).status == 'active'

    def test_pause_without_enrollment_fails(self, dispatcher, make_trigger, event):
        trigger = make_trigger('pause_sequence', {})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'failed'
        assert outcome['message'] == 'Active enrollment not found'

    def test_advance_to_step(self, dispatcher, make_trigger, event, enrollment_id):
        trigger = make_trigger('advance_to_step', {'steps_to_advance': 2})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['result_data']['current_step'] == 2
        pending = ScheduledExecution.query.filter_by(enrollment_id=enrollment_id, status='pending').one()
        assert pending.step_index == 2

    def test_switch_branch(self, dispatcher, make_trigger, event, enrollment_id):
        trigger = make_trigger('switch_branch', {'branch_name': 'enterprise'})

        dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert Enrollment.query.get(enrollment_id).branch_name == 'enterprise'


class TestOutboundActions:

    def test_send_notification(self, dispatcher, make_trigger, event, mock_resend):
        trigger = make_trigger('send_notification', {'recipients': ['sales@acme.com', 'ops@acme.com']})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'success'
        assert outcome['result_data'] == {'sent': 2, 'failed': 0}
        assert mock_resend.Emails.send.call_count == 2
        params = mock_resend.Emails.send.call_args[0][0]
        assert params['subject'] == 'Trigger fired: send_notification trigger'
        assert 'Jane Doe' in params['html']

    def test_send_notification_disabled(self, app, dispatcher, make_trigger, event, mock_resend):
        app.config['NOTIFICATIONS_ENABLED'] = False
        trigger = make_trigger('send_notification', {'recipients': ['sales@acme.com']})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['result_data'] == {'sent': 0, 'skipped': True}
        mock_resend.Emails.send.assert_not_called()

    def test_send_notification_all_failed(self, dispatcher, make_trigger, event, mock_resend):
        mock_resend.Emails.send.side_effect = Exception("rejected")
        trigger = make_trigger('send_notification', {'recipients': ['sales@acme.com']})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'failed'
        assert outcome['message'] == 'Notification could not be delivered'

    def test_webhook(self, dispatcher, make_trigger, event, mock_requests):
        trigger = make_trigger('webhook', {'url': 'https://crm.example.com/hooks', 'method': 'put',
                                           'headers': {'X-Token': 'abc'}})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['result_data'] == {'status': 200, 'status_text': 'OK'}
        method, url = mock_requests.call_args[0]
        kwargs = mock_requests.call_args[1]
        assert (method, url) == ('PUT', 'https://crm.example.com/hooks')
        assert kwargs['headers']['X-Token'] == 'abc'
        assert kwargs['json']['event']['id'] == event.id
        assert kwargs['timeout'] == 10

    def test_webhook_error_status_fails(self, dispatcher, make_trigger, event, mock_requests):
        mock_requests.return_value.ok = False
        mock_requests.return_value.status_code = 503
        mock_requests.return_value.reason = 'Service Unavailable'
        trigger = make_trigger('webhook', {'url': 'https://crm.example.com/hooks'})

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'failed'
        assert '503' in outcome['message']
        assert _only_log(trigger.id).error_message == outcome['message']


class TestDelayedDispatch:

    def test_delay_schedules_instead_of_running(self, dispatcher, make_trigger, event, sample_lead):
        trigger = make_trigger('add_tag', {'tag': 'hot'}, delay_minutes=30)

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM)

        assert outcome['status'] == 'scheduled'
        execution = ScheduledExecution.query.one()
        assert execution.kind == ScheduledExecution.KIND_TRIGGER_ACTION
        assert execution.due_at == MONDAY_10AM + timedelta(minutes=30)
        assert _only_log(trigger.id).status == 'scheduled'
        assert Lead.query.get(sample_lead.id).tags == []

    def test_delay_can_be_ignored(self, dispatcher, make_trigger, event, sample_lead):
        trigger = make_trigger('add_tag', {'tag': 'hot'}, delay_minutes=30)

        outcome = dispatcher.dispatch(trigger, event, now=MONDAY_10AM, honor_delay=False)

        assert outcome['status'] == 'success'
        assert Lead.query.get(sample_lead.id).tags == ['hot']
        assert ScheduledExecution.query.count() == 0


class TestValidateActionConfig:

    @pytest.mark.parametrize('action_type, config, field', [
        ('enroll_in_sequence', {}, 'action_config.template_id'),
        ('advance_to_step', {'steps_to_advance': 0}, 'action_config.steps_to_advance'),
        ('advance_to_step', {'steps_to_advance': True}, 'action_config.steps_to_advance'),
        ('switch_branch', {}, 'action_config.branch_name'),
        ('add_tag', {'tags': []}, 'action_config.tags'),
        ('add_tag', {}, 'action_config.tag'),
        ('update_field', {'field': 'email', 'value': 'x'}, 'action_config.fields'),
        ('create_task', {'due_date': 'next tuesday'}, 'action_config.due_date'),
        ('send_notification', {'recipients': []}, 'action_config.recipients'),
        ('webhook', {'url': 'ftp://example.com'}, 'action_config.url'),
        ('webhook', {'url': 'https://example.com', 'method': 'TRACE'}, 'action_config.method'),
    ])
    def test_invalid_configs(self, action_type, config, field):
        assert field in validate_action_config(action_type, config, ALLOWED_FIELDS)

    def test_valid_configs(self):
        assert validate_action_config('add_tag', {'tag': 'hot'}, ALLOWED_FIELDS) == {}
        assert validate_action_config('update_field', {'field': 'stage', 'value': 'sql'}, ALLOWED_FIELDS) == {}
        assert validate_action_config('webhook', {'url': 'https://example.com/hook'}, ALLOWED_FIELDS) == {}
        assert validate_action_config('create_task', {'due_date': '2024-01-20T09:00:00Z'}, ALLOWED_FIELDS) == {}

    def test_config_must_be_object(self):
        assert validate_action_config('add_tag', ['hot'], ALLOWED_FIELDS) == {'action_config': 'must be an object'}
