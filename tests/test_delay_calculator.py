"""
Unit tests for timezone detection and step due-time calculation.

All dates are fixed: 2024-01-15 is a Monday, when New York is UTC-5.
"""

import pytest
from datetime import datetime, timedelta

from outreach_engine.models import Lead, SequenceStep, SequenceTemplate, UnsubscribePreference
from outreach_engine.services.sequence_engine import SequenceEngine
from outreach_engine.services.sequence_engine.timezone import (
    detect_timezone_from_location,
    detect_timezone_from_phone
)


@pytest.fixture
def engine(app):
    return SequenceEngine()


@pytest.fixture
def ny_lead(db_session, sample_org):
    lead = Lead(org_id=sample_org.id, email='nyc@example.com', timezone='America/New_York',
                tags=[], custom_fields={})
    db_session.add(lead)
    db_session.commit()
    return lead


def _step(db_session, org_id, wait_minutes=0, skip_weekends=True, window=None, use_timezone=True):
    template = SequenceTemplate(org_id=org_id, name=f'Template {wait_minutes}', skip_weekends=skip_weekends)
    if window:
        template.send_window_start, template.send_window_end = window
    db_session.add(template)
    db_session.flush()
    step = SequenceStep(template_id=template.id, step_index=0, wait_before_minutes=wait_minutes,
                        channel='email', content={}, use_timezone_scheduling=use_timezone)
    db_session.add(step)
    db_session.commit()
    return step


class TestTimezoneDetection:

    def test_phone_prefixes(self):
        assert detect_timezone_from_phone('+1 (212) 555-0100') == 'America/New_York'
        assert detect_timezone_from_phone('+1 415 555 0100') == 'America/Los_Angeles'
        assert detect_timezone_from_phone('+44 20 7946 0000') == 'Europe/London'
        assert detect_timezone_from_phone('+358 9 1234567') == 'Europe/Helsinki'
        assert detect_timezone_from_phone('+999 123') is None
        assert detect_timezone_from_phone(None) is None

    def test_location(self):
        assert detect_timezone_from_location('us', 'tx') == 'America/Chicago'
        assert detect_timezone_from_location('GB') == 'Europe/London'
        assert detect_timezone_from_location('US', 'ZZ') is None
        assert detect_timezone_from_location(None) is None

    def test_explicit_timezone_wins(self, engine, sample_lead):
        sample_lead.timezone = 'Asia/Tokyo'
        sample_lead.phone = '+44 20 7946 0000'
        assert engine._detect_lead_timezone(sample_lead) == {
            'timezone': 'Asia/Tokyo', 'confidence': 'high', 'source': 'explicit'
        }

    def test_custom_field_timezone(self, engine, sample_lead):
        sample_lead.timezone = None
        sample_lead.custom_fields = {'timezone': 'Europe/Berlin'}
        assert engine._detect_lead_timezone(sample_lead)['timezone'] == 'Europe/Berlin'

    def test_invalid_explicit_falls_back_to_phone(self, engine, sample_lead):
        sample_lead.timezone = 'Mars/Olympus_Mons'
        sample_lead.phone = '+44 20 7946 0000'
        detected = engine._detect_lead_timezone(sample_lead)
        assert detected['timezone'] == 'Europe/London'
        assert detected['source'] == 'phone'

    def test_location_fallback(self, engine, sample_lead):
        sample_lead.timezone = None
        sample_lead.country = 'US'
        sample_lead.state = 'CA'
        assert engine._detect_lead_timezone(sample_lead)['source'] == 'location'
        assert engine._detect_lead_timezone(sample_lead)['timezone'] == 'America/Los_Angeles'

    def test_organization_default(self, engine, db_session, sample_org, sample_lead):
        sample_org.default_timezone = 'Europe/Paris'
        db_session.commit()
        sample_lead.timezone = None
        assert engine._detect_lead_timezone(sample_lead) == {
            'timezone': 'Europe/Paris', 'confidence': 'low', 'source': 'organization'
        }

    def test_configured_default(self, engine, sample_lead):
        sample_lead.timezone = None
        assert engine._detect_lead_timezone(sample_lead) == {
            'timezone': 'UTC', 'confidence': 'low', 'source': 'default'
        }


class TestComputeNextDueAt:
    """Business hours are 9-17 local unless a template or preference narrows them."""

    def test_before_window_moves_to_window_start(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id)
        # 05:00 in New York
        due_at = engine.compute_next_due_at(step, ny_lead, datetime(2024, 1, 15, 10, 0))
        assert due_at == datetime(2024, 1, 15, 14, 0)

    def test_inside_window_is_unchanged(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id)
        now = datetime(2024, 1, 15, 15, 30)
        assert engine.compute_next_due_at(step, ny_lead, now) == now

    def test_after_window_moves_to_next_day(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id)
        # 18:00 in New York
        due_at = engine.compute_next_due_at(step, ny_lead, datetime(2024, 1, 15, 23, 0))
        assert due_at == datetime(2024, 1, 16, 14, 0)

    def test_friday_evening_moves_to_monday(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id)
        due_at = engine.compute_next_due_at(step, ny_lead, datetime(2024, 1, 19, 23, 0))
        assert due_at == datetime(2024, 1, 22, 14, 0)

    def test_weekends_allowed_when_template_says_so(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id, skip_weekends=False)
        due_at = engine.compute_next_due_at(step, ny_lead, datetime(2024, 1, 19, 23, 0))
        assert due_at == datetime(2024, 1, 20, 14, 0)

    def test_wait_is_added_before_window_check(self, engine, db_session, sample_org, sample_lead):
        step = _step(db_session, sample_org.id, wait_minutes=60)
        # 16:30 UTC + 1h lands after 17:00
        due_at = engine.compute_next_due_at(step, sample_lead, datetime(2024, 1, 15, 16, 30))
        assert due_at == datetime(2024, 1, 16, 9, 0)

    def test_multi_day_wait(self, engine, db_session, sample_org, sample_lead):
        step = _step(db_session, sample_org.id, wait_minutes=3 * 24 * 60)
        now = datetime(2024, 1, 15, 11, 0)
        assert engine.compute_next_due_at(step, sample_lead, now) == datetime(2024, 1, 18, 11, 0)

    def test_timezone_scheduling_off(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id, wait_minutes=30, use_timezone=False)
        # Saturday night, returned as-is
        now = datetime(2024, 1, 20, 3, 0)
        assert engine.compute_next_due_at(step, ny_lead, now) == now + timedelta(minutes=30)

    def test_template_send_window(self, engine, db_session, sample_org, sample_lead):
        step = _step(db_session, sample_org.id, window=(10, 12))
        due_at = engine.compute_next_due_at(step, sample_lead, datetime(2024, 1, 15, 12, 30))
        assert due_at == datetime(2024, 1, 16, 10, 0)

    def test_lead_preferred_window_wins(self, engine, db_session, sample_org, sample_lead):
        step = _step(db_session, sample_org.id, window=(10, 12))
        preference = UnsubscribePreference(org_id=sample_org.id, lead_id=sample_lead.id, email=sample_lead.email,
                                           unsubscribe_token='token-1', excluded_template_ids=[],
                                           preferred_send_window={'start': 13, 'end': 15})
        db_session.add(preference)
        db_session.commit()

        due_at = engine.compute_next_due_at(step, sample_lead, datetime(2024, 1, 15, 10, 30),
                                            preference=preference)
        assert due_at == datetime(2024, 1, 15, 13, 0)

    def test_daylight_saving_transition(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id)
        # Clocks move forward on Sunday 2024-03-10; Monday 09:00 EDT is 13:00 UTC
        due_at = engine.compute_next_due_at(step, ny_lead, datetime(2024, 3, 9, 12, 0))
        assert due_at == datetime(2024, 3, 11, 13, 0)

    def test_business_hours_check(self, engine):
        import pytz
        tz = pytz.timezone('America/New_York')
        assert engine._is_business_hours(tz, datetime(2024, 1, 15, 15, 0), 9, 17)
        assert not engine._is_business_hours(tz, datetime(2024, 1, 15, 23, 0), 9, 17)
        assert not engine._is_business_hours(tz, datetime(2024, 1, 20, 15, 0), 9, 17)

    def test_due_times_always_fall_in_business_hours(self, engine, db_session, sample_org, ny_lead):
        import pytz
        tz = pytz.timezone('America/New_York')
        step = _step(db_session, sample_org.id, wait_minutes=90)

        # Every three hours across a week, DST change included
        start = datetime(2024, 3, 6, 0, 0)
        for offset in range(0, 7 * 24, 3):
            now = start + timedelta(hours=offset)
            due_at = engine.compute_next_due_at(step, ny_lead, now)
            assert due_at >= now + timedelta(minutes=90)
            assert engine._is_business_hours(tz, due_at, 9, 17), now

    def test_deferred_due_at_adds_no_wait(self, engine, db_session, sample_org, ny_lead):
        step = _step(db_session, sample_org.id, wait_minutes=1440)
        # Saturday in New York rolls to Monday 09:00
        due_at = engine.compute_deferred_due_at(step, ny_lead, datetime(2024, 1, 20, 15, 0))
        assert due_at == datetime(2024, 1, 22, 14, 0)
        # Inside the window it is used as is
        inside = datetime(2024, 1, 16, 15, 0)
        assert engine.compute_deferred_due_at(step, ny_lead, inside) == inside
