"""
Pytest configuration and fixtures for outreach engine tests.

This module provides:
- Test database setup and teardown
- Flask test client
- Mock external services (Resend, outbound webhooks)
- Common test data
"""

import pytest
from datetime import datetime
from unittest.mock import Mock, patch

from outreach_engine.main import create_app
from outreach_engine.extensions import db
from outreach_engine.models import (
    Organization, Lead, SequenceTemplate, SequenceStep, Trigger
)

# Monday 10:00 UTC, inside default business hours
MONDAY_10AM = datetime(2024, 1, 15, 10, 0)


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Database session for tests, bound to the app fixture's context."""
    yield db.session


@pytest.fixture
def sample_org(db_session):
    """Create a sample organization for testing."""
    org = Organization(name="Test Org")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def other_org(db_session):
    org = Organization(name="Other Org")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def sample_lead(db_session, sample_org):
    """Create a sample lead for testing."""
    lead = Lead(
        org_id=sample_org.id,
        email="jane@acme.com",
        first_name="Jane",
        last_name="Doe",
        company="Acme",
        timezone="UTC",
        status="new",
        lead_score=40,
        tags=[],
        custom_fields={"industry": "saas"}
    )
    db_session.add(lead)
    db_session.commit()
    return lead


@pytest.fixture
def sample_template(db_session, sample_org):
    """A three step sequence: email, task after a day, email after two more days."""
    template = SequenceTemplate(
        org_id=sample_org.id,
        name="Onboarding",
        status="active",
        skip_weekends=True
    )
    db_session.add(template)
    db_session.flush()

    steps = [
        SequenceStep(template_id=template.id, step_index=0, wait_before_minutes=0, channel='email',
                     content={'subject': 'Hi {first_name}', 'body_html': '<p>Hello from {company}</p>'},
                     use_timezone_scheduling=False),
        SequenceStep(template_id=template.id, step_index=1, wait_before_minutes=1440, channel='task',
                     content={'title': 'Call {first_name}', 'priority': 'high'},
                     use_timezone_scheduling=False),
        SequenceStep(template_id=template.id, step_index=2, wait_before_minutes=2880, channel='email',
                     content={'subject': 'Following up', 'body_html': '<p>Any thoughts?</p>'},
                     use_timezone_scheduling=False),
    ]
    db_session.add_all(steps)
    db_session.commit()
    return template


@pytest.fixture
def sample_trigger(db_session, sample_org):
    """Create a sample add_tag trigger for testing."""
    trigger = Trigger(
        org_id=sample_org.id,
        name="Pricing page visit",
        trigger_type="page_visit",
        conditions={"page_url": {"contains": "/pricing"}},
        action_type="add_tag",
        action_config={"tag": "pricing-interest"},
        cooldown_hours=24,
        priority=100
    )
    db_session.add(trigger)
    db_session.commit()
    return trigger


@pytest.fixture
def mock_resend():
    """Mock Resend email service for testing."""
    with patch('outreach_engine.services.mailer.resend') as mock_resend:
        mock_resend.Emails.send.return_value = {
            "id": "email-123",
            "from": "outreach@example.com",
            "to": "jane@acme.com",
            "subject": "Test Email"
        }
        yield mock_resend


@pytest.fixture
def mock_requests():
    """Mock outbound webhook calls."""
    with patch('outreach_engine.services.webhook_client.requests.request') as mock_request:
        response = Mock()
        response.status_code = 200
        response.reason = 'OK'
        response.ok = True
        response.text = '{"received": true}'
        mock_request.return_value = response
        yield mock_request


@pytest.fixture
def org_headers(sample_org):
    """Headers for requests scoped to the sample organization."""
    return {
        'Content-Type': 'application/json',
        'X-Organization-Id': sample_org.id
    }


@pytest.fixture
def json_headers():
    """Headers for JSON requests."""
    return {
        'Content-Type': 'application/json'
    }
