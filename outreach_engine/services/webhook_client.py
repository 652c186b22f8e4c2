import logging
from typing import Any, Dict, Optional

import requests
from flask import current_app

from outreach_engine.utils.exceptions import TransientActionFailure

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ('GET', 'POST', 'PUT', 'PATCH', 'DELETE')


class WebhookClient:
    """Outbound HTTP calls for webhook actions and webhook sequence steps."""

    def __init__(self, timeout: Optional[int] = None):
        self.timeout = timeout or current_app.config.get('WEBHOOK_TIMEOUT_SECONDS', 10)

    def call(self, url: str, method: str = 'POST', payload: Any = None,
             headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Make one webhook call and capture the response.

        Network errors and non-2xx responses raise TransientActionFailure.
        Nothing is retried.
        """
        method = (method or 'POST').upper()
        if method not in ALLOWED_METHODS:
            raise TransientActionFailure(f"Unsupported webhook method: {method}")

        request_headers = {'Content-Type': 'application/json'}
        if headers:
            request_headers.update(headers)

        kwargs = {'headers': request_headers, 'timeout': self.timeout}
        if method != 'GET' and payload is not None:
            kwargs['json'] = payload

        try:
            response = requests.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Webhook request to {url} failed: {str(e)}")
            raise TransientActionFailure(f"Webhook request failed: {str(e)}", {'url': url})

        result = {
            'status': response.status_code,
            'status_text': response.reason,
            'body': response.text[:2000] if response.text else None
        }

        if not response.ok:
            logger.error(f"Webhook {url} responded with {response.status_code}")
            raise TransientActionFailure(
                f"Webhook failed: {response.status_code} {response.reason}",
                {'url': url, **result}
            )

        logger.info(f"Webhook {method} {url} -> {response.status_code}")
        return result
