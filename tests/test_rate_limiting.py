"""Unit tests for trigger cooldown and quota helpers."""

from datetime import timedelta

from outreach_engine.models import Trigger, TriggerExecutionLog
from outreach_engine.services import rate_limiting

from tests.conftest import MONDAY_10AM


def _log(db_session, trigger, lead_id, status, created_at):
    db_session.add(TriggerExecutionLog(
        org_id=trigger.org_id,
        trigger_id=trigger.id,
        lead_id=lead_id,
        action_type=trigger.action_type,
        status=status,
        created_at=created_at
    ))
    db_session.commit()


class TestCooldown:

    def test_no_history_allows(self, sample_trigger, sample_lead):
        assert rate_limiting.check_cooldown(sample_trigger.id, sample_lead.id, 24, MONDAY_10AM)

    def test_zero_hours_always_allows(self, db_session, sample_trigger, sample_lead):
        _log(db_session, sample_trigger, sample_lead.id, 'success', MONDAY_10AM)
        assert rate_limiting.check_cooldown(sample_trigger.id, sample_lead.id, 0, MONDAY_10AM)

    def test_recent_success_blocks(self, db_session, sample_trigger, sample_lead):
        _log(db_session, sample_trigger, sample_lead.id, 'success', MONDAY_10AM)
        assert not rate_limiting.check_cooldown(sample_trigger.id, sample_lead.id, 24,
                                                MONDAY_10AM + timedelta(hours=23, minutes=59))

    def test_boundary_is_inclusive(self, db_session, sample_trigger, sample_lead):
        _log(db_session, sample_trigger, sample_lead.id, 'success', MONDAY_10AM)
        assert rate_limiting.check_cooldown(sample_trigger.id, sample_lead.id, 24,
                                            MONDAY_10AM + timedelta(hours=24))

    def test_failed_and_skipped_runs_do_not_count(self, db_session, sample_trigger, sample_lead):
        _log(db_session, sample_trigger, sample_lead.id, 'failed', MONDAY_10AM)
        _log(db_session, sample_trigger, sample_lead.id, 'skipped', MONDAY_10AM)
        assert rate_limiting.check_cooldown(sample_trigger.id, sample_lead.id, 24, MONDAY_10AM)


class TestQuotas:

    def test_unlimited_by_default(self, sample_trigger, sample_lead):
        assert rate_limiting.check_quota(sample_trigger)
        assert rate_limiting.check_lead_quota(sample_trigger, sample_lead.id)

    def test_total_quota(self, db_session, sample_trigger):
        sample_trigger.max_triggers_total = 2
        sample_trigger.total_triggers = 2
        db_session.commit()
        assert not rate_limiting.check_quota(sample_trigger)

    def test_lead_quota_counts_successes(self, db_session, sample_trigger, sample_lead):
        sample_trigger.max_triggers_per_lead = 1
        db_session.commit()
        _log(db_session, sample_trigger, 'someone-else', 'success', MONDAY_10AM)
        assert rate_limiting.check_lead_quota(sample_trigger, sample_lead.id)

        _log(db_session, sample_trigger, sample_lead.id, 'success', MONDAY_10AM)
        assert not rate_limiting.check_lead_quota(sample_trigger, sample_lead.id)

    def test_record_success_increments_atomically(self, db_session, sample_trigger):
        rate_limiting.record_success(sample_trigger.id, MONDAY_10AM)
        rate_limiting.record_success(sample_trigger.id, MONDAY_10AM + timedelta(minutes=5))
        db_session.commit()

        trigger = Trigger.query.get(sample_trigger.id)
        assert trigger.total_triggers == 2
        assert trigger.last_triggered_at == MONDAY_10AM + timedelta(minutes=5)
