"""Helpers for reading per-request inputs shared by every blueprint."""

from flask import request

from outreach_engine.utils.exceptions import ValidationError

ORG_HEADER = 'X-Organization-Id'


def get_org_id():
    """Return the tenant id passed explicitly on the request."""
    org_id = (request.headers.get(ORG_HEADER) or '').strip()
    if not org_id:
        raise ValidationError(f"{ORG_HEADER} header is required",
                              {'headers': {ORG_HEADER: 'required'}})
    return org_id


def get_json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be a JSON object")
    return data
