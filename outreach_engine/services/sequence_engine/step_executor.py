"""
Step execution per channel.

This module contains functionality for:
- Email steps (personalized, with an unsubscribe link)
- Task and LinkedIn steps (CRM tasks for manual follow-up)
- Wait, conditional and webhook steps

Each executor returns a result dict. A returned ``next_step`` moves the
enrollment to that index instead of the following one, and ``complete``
ends the sequence. Failures raise EngineError subclasses.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict

from outreach_engine.models import db, Enrollment, Lead, SequenceStep, Task
from outreach_engine.services import suppression
from outreach_engine.services.conditions import parse_conditions
from outreach_engine.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

STEP_CHANNELS = ['email', 'task', 'wait', 'conditional', 'webhook', 'linkedin']


def execute_step(self, enrollment: Enrollment, step: SequenceStep, now: datetime = None) -> Dict[str, Any]:
    """Execute one sequence step for an enrollment."""
    now = now or datetime.utcnow()
    lead = enrollment.lead
    content = self._step_content(step, enrollment)

    executors = {
        'email': self._execute_email_step,
        'task': self._execute_task_step,
        'wait': self._execute_wait_step,
        'conditional': self._execute_conditional_step,
        'webhook': self._execute_webhook_step,
        'linkedin': self._execute_linkedin_step,
    }
    executor = executors.get(step.channel)
    if executor is None:
        raise ValidationError(f"Unknown step channel: {step.channel}", {'channel': step.channel})

    result = executor(enrollment, step, lead, content, now)
    result['channel'] = step.channel
    logger.info(f"Executed {step.channel} step {step.step_index} for enrollment {enrollment.id}")
    return result


def _execute_email_step(self, enrollment: Enrollment, step: SequenceStep, lead: Lead,
                        content: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    if not lead.email:
        raise ValidationError("Lead has no email address", {'lead_id': lead.id})

    subject = self._format_message(content.get('subject', ''), lead)
    body_html = self._format_message(content.get('body_html') or content.get('body', ''), lead)

    preference = suppression.get_or_create_preference(enrollment.org_id, lead, now=now)
    unsubscribe_link = suppression.unsubscribe_url(preference)
    body_html += f'<p style="font-size:12px;color:#666"><a href="{unsubscribe_link}">Unsubscribe or manage preferences</a></p>'

    result = self._get_mailer().send_email(
        lead.email,
        subject,
        body_html,
        text=self._html_to_text(body_html),
        headers={'List-Unsubscribe': f'<{unsubscribe_link}>'}
    )
    return {'success': True, 'message_id': result.get('message_id'), 'subject': subject}


def _create_step_task(self, enrollment: Enrollment, lead: Lead, title: str, description: str,
                      priority: str, due_at: datetime, source: str) -> Task:
    task = Task(
        org_id=enrollment.org_id,
        lead_id=lead.id,
        title=title,
        description=description,
        priority=priority,
        due_at=due_at,
        status='open',
        source=source
    )
    db.session.add(task)
    db.session.flush()
    return task


def _execute_task_step(self, enrollment: Enrollment, step: SequenceStep, lead: Lead,
                       content: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    task = self._create_step_task(
        enrollment, lead,
        title=self._format_message(content.get('title') or 'Sequence task', lead),
        description=self._format_message(content.get('description', ''), lead),
        priority=content.get('priority', 'medium'),
        due_at=now + timedelta(days=content.get('due_days', 1)),
        source='sequence'
    )
    return {'success': True, 'task_id': task.id}


def _execute_linkedin_step(self, enrollment: Enrollment, step: SequenceStep, lead: Lead,
                           content: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    # LinkedIn touches are handed to a rep as a manual task
    action = content.get('action', 'message')
    task = self._create_step_task(
        enrollment, lead,
        title=f"LinkedIn {action}: {lead.full_name}",
        description=self._format_message(content.get('message', ''), lead),
        priority=content.get('priority', 'medium'),
        due_at=now + timedelta(days=content.get('due_days', 1)),
        source='sequence_linkedin'
    )
    return {'success': True, 'task_id': task.id, 'manual': True}


def _execute_wait_step(self, enrollment: Enrollment, step: SequenceStep, lead: Lead,
                       content: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {'success': True}


def _execute_conditional_step(self, enrollment: Enrollment, step: SequenceStep, lead: Lead,
                              content: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Branch on the lead record: jump to ``goto_step`` when matched, end on ``skip_to_end`` otherwise."""
    raw_conditions = content.get('conditions')
    if not raw_conditions:
        return {'success': True, 'condition_met': None}

    context = lead.filter_context()
    context['branch_name'] = enrollment.branch_name
    condition_met = parse_conditions(raw_conditions, list_means_in=True).matches(context)

    result = {'success': True, 'condition_met': condition_met}
    if condition_met and content.get('goto_step') is not None:
        result['next_step'] = int(content['goto_step'])
    elif not condition_met and content.get('skip_to_end'):
        result['complete'] = True
    return result


def _execute_webhook_step(self, enrollment: Enrollment, step: SequenceStep, lead: Lead,
                          content: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    url = content.get('url')
    if not url:
        raise ValidationError("Webhook URL is required", {'url': 'required'})

    payload = {
        'enrollment_id': enrollment.id,
        'lead': lead.to_dict(),
        'step_index': step.step_index,
        'custom_body': content.get('body')
    }
    response = self._get_webhook_client().call(
        url,
        method=content.get('method', 'POST'),
        payload=payload,
        headers=content.get('headers')
    )
    return {'success': True, 'response': response}
