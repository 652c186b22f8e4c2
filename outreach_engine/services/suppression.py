"""
Suppression gate and unsubscribe preferences.

A lead is suppressed when an unexpired SuppressionEntry of its organization
matches its lead id, its (case-folded) email or its email domain, or when its
UnsubscribePreference opts out of sequences or email entirely. The gate is
consulted at enrollment time and again right before every step executes.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import current_app

from outreach_engine.models import (
    db, Lead, ScheduledExecution, SuppressionEntry, UnsubscribePreference
)
from outreach_engine.utils.exceptions import NotFound, ValidationError

logger = logging.getLogger(__name__)

SUPPRESSION_REASONS = ['unsubscribe', 'bounce', 'complaint', 'competitor', 'customer', 'manual', 'invalid']
SUPPRESSION_SOURCES = ['manual', 'import', 'auto', 'unsubscribe_link', 'bounce_webhook']
MAX_EMAILS_PER_WEEK_LIMIT = 50
IMPORT_BATCH_SIZE = 100


def _normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


def _email_domain(email: Optional[str]) -> Optional[str]:
    if not email or '@' not in email:
        return None
    return email.rsplit('@', 1)[1]


def _active_entry_query(org_id: str, lead_id: Optional[str], email: Optional[str], now: datetime):
    email = _normalize_email(email)
    domain = _email_domain(email)

    clauses = []
    if lead_id:
        clauses.append(SuppressionEntry.lead_id == lead_id)
    if email:
        clauses.append(SuppressionEntry.email == email)
    if domain:
        clauses.append(SuppressionEntry.domain == domain)
    if not clauses:
        return None

    return SuppressionEntry.query.filter(
        SuppressionEntry.org_id == org_id,
        db.or_(*clauses),
        db.or_(SuppressionEntry.expires_at.is_(None), SuppressionEntry.expires_at > now)
    ).order_by(SuppressionEntry.created_at.desc())


def _preference_for(org_id: str, lead_id: Optional[str]) -> Optional[UnsubscribePreference]:
    if not lead_id:
        return None
    return UnsubscribePreference.query.filter_by(org_id=org_id, lead_id=lead_id).first()


def suppression_reason(org_id: str, lead_id: Optional[str], email: Optional[str],
                       template_id: Optional[str] = None, now: datetime = None) -> Optional[str]:
    """Return why a lead must not be contacted, or None when it may be."""
    now = now or datetime.utcnow()

    query = _active_entry_query(org_id, lead_id, email, now)
    entry = query.first() if query is not None else None
    if entry:
        return f"Lead is suppressed: {entry.reason}"

    preference = _preference_for(org_id, lead_id)
    if preference:
        if preference.all_sequences:
            return "Lead has unsubscribed from all sequences"
        if not preference.email_enabled:
            return "Lead has disabled email"
        if template_id and template_id in (preference.excluded_template_ids or []):
            return "Lead has opted out of this sequence"

    return None


def is_suppressed(org_id: str, lead_id: Optional[str], email: Optional[str],
                  template_id: Optional[str] = None, now: datetime = None) -> bool:
    return suppression_reason(org_id, lead_id, email, template_id=template_id, now=now) is not None


def add_suppression(org_id: str, reason: str, source: str = 'manual', email: str = None,
                    domain: str = None, lead_id: str = None, notes: str = None,
                    expires_at: datetime = None, commit: bool = True) -> SuppressionEntry:
    """Append a suppression entry. At least one of email, domain or lead_id is required."""
    errors = {}
    if reason not in SUPPRESSION_REASONS:
        errors['reason'] = f"must be one of {', '.join(SUPPRESSION_REASONS)}"
    if source not in SUPPRESSION_SOURCES:
        errors['source'] = f"must be one of {', '.join(SUPPRESSION_SOURCES)}"
    if not (email or domain or lead_id):
        errors['email'] = 'At least one of email, domain, or lead_id must be provided'
    if errors:
        raise ValidationError("Invalid suppression entry", errors)

    entry = SuppressionEntry(
        org_id=org_id,
        lead_id=lead_id,
        email=_normalize_email(email),
        domain=domain.strip().lower() if domain else None,
        reason=reason,
        source=source,
        notes=notes,
        expires_at=expires_at
    )
    db.session.add(entry)
    if commit:
        db.session.commit()

    logger.info(f"Added suppression for {entry.email or entry.domain or entry.lead_id} in org {org_id} ({reason})")
    return entry


def bulk_import(org_id: str, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Import suppression rows in batches; invalid rows are counted and reported, not raised."""
    results = {'imported': 0, 'failed': 0, 'errors': []}

    for start in range(0, len(rows), IMPORT_BATCH_SIZE):
        batch = rows[start:start + IMPORT_BATCH_SIZE]
        for offset, row in enumerate(batch):
            try:
                add_suppression(
                    org_id,
                    reason=row.get('reason', 'manual'),
                    source='import',
                    email=row.get('email'),
                    domain=row.get('domain'),
                    lead_id=row.get('lead_id'),
                    notes=row.get('notes'),
                    commit=False
                )
                results['imported'] += 1
            except ValidationError as e:
                results['failed'] += 1
                results['errors'].append(f"Row {start + offset + 1}: {e.details or e.message}")
        db.session.commit()

    logger.info(f"Imported {results['imported']} suppressions for org {org_id} ({results['failed']} failed)")
    return results


def list_suppressions(org_id: str, reason: str = None, source: str = None,
                      search: str = None, limit: int = 100) -> List[SuppressionEntry]:
    query = SuppressionEntry.query.filter_by(org_id=org_id)
    if reason:
        query = query.filter_by(reason=reason)
    if source:
        query = query.filter_by(source=source)
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(db.or_(
            SuppressionEntry.email.like(pattern),
            SuppressionEntry.domain.like(pattern),
            SuppressionEntry.notes.ilike(pattern)
        ))
    return query.order_by(SuppressionEntry.created_at.desc()).limit(limit).all()


def handle_bounce(org_id: str, email: str, bounce_type: str = 'hard',
                  notes: str = None) -> Optional[SuppressionEntry]:
    """Record a bounce. Only hard bounces suppress the address."""
    if bounce_type not in ('hard', 'soft'):
        raise ValidationError("Invalid bounce type", {'bounce_type': "must be 'hard' or 'soft'"})

    if bounce_type != 'hard':
        logger.info(f"Soft bounce for {email} in org {org_id}, not suppressing")
        return None

    lead = Lead.find_by_email(org_id, email)
    return add_suppression(
        org_id,
        reason='bounce',
        source='bounce_webhook',
        email=email,
        lead_id=lead.id if lead else None,
        notes=notes or 'Hard bounce'
    )


def handle_complaint(org_id: str, email: str, notes: str = None) -> SuppressionEntry:
    """Record a spam complaint; the address is always suppressed."""
    lead = Lead.find_by_email(org_id, email)
    return add_suppression(
        org_id,
        reason='complaint',
        source='auto',
        email=email,
        lead_id=lead.id if lead else None,
        notes=notes or 'Spam complaint'
    )


def _new_token():
    return secrets.token_urlsafe(32)


def _token_expiry(now: datetime) -> Optional[datetime]:
    ttl_days = current_app.config.get('UNSUBSCRIBE_TOKEN_TTL_DAYS', 90)
    if not ttl_days:
        return None
    return now + timedelta(days=ttl_days)


def get_or_create_preference(org_id: str, lead: Lead, now: datetime = None) -> UnsubscribePreference:
    """Return the lead's preference row, issuing an unsubscribe token on first use."""
    now = now or datetime.utcnow()
    preference = _preference_for(org_id, lead.id)
    if preference:
        return preference

    preference = UnsubscribePreference(
        org_id=org_id,
        lead_id=lead.id,
        email=_normalize_email(lead.email) or '',
        unsubscribe_token=_new_token(),
        token_expires_at=_token_expiry(now),
        excluded_template_ids=[]
    )
    db.session.add(preference)
    db.session.commit()
    logger.info(f"Issued unsubscribe token for lead {lead.id}")
    return preference


def unsubscribe_url(preference: UnsubscribePreference) -> str:
    base_url = current_app.config.get('PUBLIC_BASE_URL', '').rstrip('/')
    return f"{base_url}/api/v1/unsubscribe/{preference.unsubscribe_token}"


def get_preference_by_token(token: str, now: datetime = None) -> UnsubscribePreference:
    """
    Look up a preference by its link token. Submitting the form rotates the
    token, so a used link no longer resolves; expired tokens are rejected.
    """
    now = now or datetime.utcnow()
    preference = UnsubscribePreference.query.filter_by(unsubscribe_token=token).first()
    if not preference:
        raise NotFound('Unsubscribe link')
    if preference.token_expires_at is not None and preference.token_expires_at <= now:
        raise ValidationError("This unsubscribe link has expired", {'token': 'expired'})
    return preference


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'on', 'yes')
    return bool(value)


def apply_preference_update(preference: UnsubscribePreference, data: Dict[str, Any],
                            now: datetime = None) -> UnsubscribePreference:
    """
    Apply a submitted preference form. The link token is consumed and rotated,
    and opting out of all sequences also appends an unsubscribe suppression.
    """
    now = now or datetime.utcnow()
    errors = {}

    if 'max_emails_per_week' in data and data['max_emails_per_week'] not in (None, ''):
        try:
            max_per_week = int(data['max_emails_per_week'])
        except (TypeError, ValueError):
            max_per_week = None
            errors['max_emails_per_week'] = 'must be an integer'
        if max_per_week is not None and not 0 <= max_per_week <= MAX_EMAILS_PER_WEEK_LIMIT:
            errors['max_emails_per_week'] = f'must be between 0 and {MAX_EMAILS_PER_WEEK_LIMIT}'
    else:
        max_per_week = None

    window = data.get('preferred_send_window')
    if window and not isinstance(window, dict):
        errors['preferred_send_window'] = 'must be an object with start and end hours'
    elif window:
        start, end = window.get('start'), window.get('end')
        if not (isinstance(start, int) and isinstance(end, int) and 0 <= start < end <= 24):
            errors['preferred_send_window'] = 'start and end must be hours with start < end'

    excluded = data.get('excluded_template_ids')
    if excluded and not (isinstance(excluded, list) and all(isinstance(item, str) for item in excluded)):
        errors['excluded_template_ids'] = 'must be a list of template ids'

    if errors:
        raise ValidationError("Invalid preferences", errors)

    for flag in ('all_sequences', 'marketing_emails', 'transactional_emails', 'email_enabled'):
        if flag in data:
            setattr(preference, flag, _parse_bool(data[flag]))
    if 'max_emails_per_week' in data:
        preference.max_emails_per_week = max_per_week
    if 'preferred_send_window' in data:
        preference.preferred_send_window = window or None
    if 'excluded_template_ids' in data:
        preference.excluded_template_ids = list(data.get('excluded_template_ids') or [])
    if 'unsubscribe_reason' in data:
        preference.unsubscribe_reason = data.get('unsubscribe_reason') or None
    if 'unsubscribe_feedback' in data:
        preference.unsubscribe_feedback = data.get('unsubscribe_feedback') or None

    preference.token_used_at = now
    preference.unsubscribe_token = _new_token()
    preference.token_expires_at = _token_expiry(now)
    preference.last_updated_at = now

    if preference.all_sequences:
        add_suppression(
            preference.org_id,
            reason='unsubscribe',
            source='unsubscribe_link',
            email=preference.email,
            lead_id=preference.lead_id,
            notes=preference.unsubscribe_reason,
            commit=False
        )

    db.session.commit()
    logger.info(f"Updated unsubscribe preferences for lead {preference.lead_id}")
    return preference


def weekly_email_cap_reached(org_id: str, lead_id: str, now: datetime = None) -> bool:
    """True when the lead's max_emails_per_week is already used up for the trailing week."""
    now = now or datetime.utcnow()
    preference = _preference_for(org_id, lead_id)
    if not preference or preference.max_emails_per_week is None:
        return False

    sent = ScheduledExecution.query.filter(
        ScheduledExecution.org_id == org_id,
        ScheduledExecution.lead_id == lead_id,
        ScheduledExecution.channel == 'email',
        ScheduledExecution.status == 'sent',
        ScheduledExecution.completed_at > now - timedelta(days=7)
    ).count()
    return sent >= preference.max_emails_per_week
