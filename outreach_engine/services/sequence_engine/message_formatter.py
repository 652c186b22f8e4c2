"""
Message formatting and personalization functionality.

This module contains functionality for:
- Placeholder replacement ({first_name}, {company}, custom fields)
- A/B variant content overrides
- Plain-text rendering of HTML bodies
"""

import html
import logging
import re
from typing import Any, Dict, Optional

from outreach_engine.models import ABTestVariant, Enrollment, Lead, SequenceStep

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r'<[^>]+>')
_BREAK_RE = re.compile(r'<\s*(br|/p|/div|/li)\s*/?>', re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r'\n{3,}')


def _format_message(self, message: str, lead: Lead) -> str:
    """Replace {placeholders} with lead data. Matching is case-insensitive."""
    if not message or lead is None:
        return message or ''

    placeholders = {
        'first_name': lead.first_name or '',
        'last_name': lead.last_name or '',
        'company': lead.company or '',
        'email': lead.email or '',
    }
    for key, value in (lead.custom_fields or {}).items():
        placeholders.setdefault(key, '' if value is None else str(value))

    formatted_message = message
    for key, value in placeholders.items():
        pattern = re.compile(r'\{' + re.escape(key) + r'\}', re.IGNORECASE)
        formatted_message = pattern.sub(lambda _match: value, formatted_message)

    return formatted_message


def _html_to_text(self, body_html: str) -> str:
    if not body_html:
        return ''
    text = _BREAK_RE.sub('\n', body_html)
    text = _TAG_RE.sub('', text)
    text = html.unescape(text)
    return _BLANK_LINES_RE.sub('\n\n', text).strip()


def _step_content(self, step: SequenceStep, enrollment: Optional[Enrollment] = None) -> Dict[str, Any]:
    """Step content with the enrollment's A/B variant overrides applied."""
    content = dict(step.content or {})
    if enrollment is None or not enrollment.variant_id:
        return content

    variant = ABTestVariant.query.get(enrollment.variant_id)
    if not variant:
        logger.warning(f"Variant {enrollment.variant_id} for enrollment {enrollment.id} no longer exists")
        return content

    overrides = (variant.content_overrides or {}).get(str(step.step_index)) or {}
    content.update(overrides)
    return content
