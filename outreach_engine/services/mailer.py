import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import resend
from flask import current_app

from outreach_engine.utils.exceptions import TransientActionFailure

logger = logging.getLogger(__name__)


class Mailer:
    """Email transport for sequence steps and internal notifications, via Resend."""

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        self.resend_api_key = api_key or current_app.config.get('RESEND_API_KEY')
        self.from_email = from_email or current_app.config.get('EMAIL_FROM')
        self.notifications_enabled = current_app.config.get('NOTIFICATIONS_ENABLED', True)

        if self.resend_api_key:
            resend.api_key = self.resend_api_key
        else:
            logger.warning("No Resend API key found - email delivery will fail")

    def send_email(self, to: str, subject: str, html: str, text: Optional[str] = None,
                   headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Send one email. Transport failures raise TransientActionFailure."""
        if not self.resend_api_key:
            raise TransientActionFailure("Email transport is not configured")

        params = {
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html
        }
        if text:
            params["text"] = text
        if headers:
            params["headers"] = headers

        try:
            response = resend.Emails.send(params)
        except Exception as e:
            logger.error(f"Failed to send email to {to}: {str(e)}")
            raise TransientActionFailure(f"Email delivery failed: {str(e)}")

        message_id = response.get('id') if isinstance(response, dict) else None
        logger.info(f"Email sent to {to}: {message_id}")
        return {'message_id': message_id, 'to': to}

    def send_notification(self, recipients: List[str], subject: str, message: str,
                          context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send an internal notification to every recipient; succeeds if at least one delivery does."""
        if not self.notifications_enabled:
            logger.info("Notifications disabled - skipping notification")
            return {'sent': 0, 'skipped': True}

        html_content = self._create_notification_template(subject, message, context or {})

        sent = 0
        failures = []
        for email in recipients:
            email = (email or '').strip()
            if not email:
                continue
            try:
                self.send_email(email, subject, html_content)
                sent += 1
            except TransientActionFailure as e:
                failures.append(f"{email}: {e.message}")

        if sent == 0:
            raise TransientActionFailure("Notification could not be delivered", {'failures': failures})
        return {'sent': sent, 'failed': len(failures)}

    def _create_notification_template(self, subject: str, message: str, context: Dict[str, Any]) -> str:
        rows = ''.join(
            f"<strong>{key.replace('_', ' ').title()}:</strong> {value}<br>"
            for key, value in context.items() if value is not None
        )
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: #0077b5; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
                .content {{ background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; }}
                .highlight {{ background: #e3f2fd; padding: 15px; border-left: 4px solid #2196f3; margin: 15px 0; }}
                .footer {{ margin-top: 20px; padding-top: 20px; border-top: 1px solid #ddd; font-size: 12px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>{subject}</h1>
                    <p>Time: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}</p>
                </div>
                <div class="content">
                    <p>{message}</p>
                    {f'<div class="highlight">{rows}</div>' if rows else ''}
                </div>
                <div class="footer">
                    <p>This notification was sent by the outreach engine</p>
                </div>
            </div>
        </body>
        </html>
        """
