"""
Timezone handling for step scheduling.

This module contains functionality for:
- Lead timezone detection (explicit field, phone prefix, location, org default)
- Safe pytz timezone lookup
- Weekend and business-hours checks in a lead's local time
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

import pytz
from flask import current_app

from outreach_engine.models import Lead, Organization

logger = logging.getLogger(__name__)

# Country code and US/CA area code prefixes, matched longest first
PHONE_TIMEZONE_MAP = {
    # US & Canada area codes
    '1201': 'America/New_York', '1202': 'America/New_York', '1203': 'America/New_York',
    '1212': 'America/New_York', '1213': 'America/Los_Angeles', '1214': 'America/Chicago',
    '1215': 'America/New_York', '1216': 'America/New_York', '1217': 'America/Chicago',
    '1301': 'America/New_York', '1302': 'America/New_York', '1303': 'America/Denver',
    '1304': 'America/New_York', '1305': 'America/New_York', '1306': 'America/Regina',
    '1307': 'America/Denver', '1308': 'America/Chicago', '1309': 'America/Chicago',
    '1310': 'America/Los_Angeles', '1312': 'America/Chicago', '1313': 'America/Detroit',
    '1314': 'America/Chicago', '1315': 'America/New_York', '1316': 'America/Chicago',
    '1317': 'America/Indiana/Indianapolis', '1318': 'America/Chicago', '1319': 'America/Chicago',
    '1401': 'America/New_York', '1402': 'America/Chicago', '1403': 'America/Edmonton',
    '1404': 'America/New_York', '1405': 'America/Chicago', '1406': 'America/Denver',
    '1407': 'America/New_York', '1408': 'America/Los_Angeles', '1409': 'America/Chicago',
    '1410': 'America/New_York', '1412': 'America/New_York', '1413': 'America/New_York',
    '1414': 'America/Chicago', '1415': 'America/Los_Angeles', '1416': 'America/Toronto',
    '1417': 'America/Chicago', '1418': 'America/Toronto', '1419': 'America/New_York',
    '1501': 'America/Chicago', '1502': 'America/New_York', '1503': 'America/Los_Angeles',
    '1504': 'America/Chicago', '1505': 'America/Denver', '1506': 'America/Halifax',
    '1507': 'America/Chicago', '1508': 'America/New_York', '1509': 'America/Los_Angeles',
    '1510': 'America/Los_Angeles', '1512': 'America/Chicago', '1513': 'America/New_York',
    '1514': 'America/Toronto', '1515': 'America/Chicago', '1516': 'America/New_York',
    '1517': 'America/Detroit', '1518': 'America/New_York', '1519': 'America/Toronto',
    '1601': 'America/Chicago', '1602': 'America/Phoenix', '1603': 'America/New_York',
    '1604': 'America/Vancouver', '1605': 'America/Chicago', '1606': 'America/New_York',
    '1607': 'America/New_York', '1608': 'America/Chicago', '1609': 'America/New_York',
    '1610': 'America/New_York', '1612': 'America/Chicago', '1613': 'America/Toronto',
    '1614': 'America/New_York', '1615': 'America/Chicago', '1616': 'America/Detroit',
    '1617': 'America/New_York', '1618': 'America/Chicago', '1619': 'America/Los_Angeles',
    '1701': 'America/Chicago', '1702': 'America/Los_Angeles', '1703': 'America/New_York',
    '1704': 'America/New_York', '1705': 'America/Toronto', '1706': 'America/New_York',
    '1707': 'America/Los_Angeles', '1708': 'America/Chicago', '1709': 'America/St_Johns',
    '1712': 'America/Chicago', '1713': 'America/Chicago', '1714': 'America/Los_Angeles',
    '1715': 'America/Chicago', '1716': 'America/New_York', '1717': 'America/New_York',
    '1718': 'America/New_York', '1719': 'America/Denver', '1720': 'America/Denver',
    '1801': 'America/Denver', '1802': 'America/New_York', '1803': 'America/New_York',
    '1804': 'America/New_York', '1805': 'America/Los_Angeles', '1806': 'America/Chicago',
    '1807': 'America/Toronto', '1808': 'Pacific/Honolulu', '1809': 'America/Santo_Domingo',
    '1810': 'America/Detroit', '1812': 'America/Chicago', '1813': 'America/New_York',
    '1814': 'America/New_York', '1815': 'America/Chicago', '1816': 'America/Chicago',
    '1817': 'America/Chicago', '1818': 'America/Los_Angeles', '1819': 'America/Toronto',
    '1901': 'America/Chicago', '1902': 'America/Halifax', '1903': 'America/Chicago',
    '1904': 'America/New_York', '1905': 'America/Toronto', '1906': 'America/Chicago',
    '1907': 'America/Anchorage', '1908': 'America/New_York', '1909': 'America/Los_Angeles',
    '1910': 'America/New_York', '1912': 'America/New_York', '1913': 'America/Chicago',
    '1914': 'America/New_York', '1915': 'America/Chicago', '1916': 'America/Los_Angeles',
    '1917': 'America/New_York', '1918': 'America/Chicago', '1919': 'America/New_York',

    # Europe
    '44': 'Europe/London',
    '33': 'Europe/Paris',
    '49': 'Europe/Berlin',
    '34': 'Europe/Madrid',
    '39': 'Europe/Rome',
    '31': 'Europe/Amsterdam',
    '32': 'Europe/Brussels',
    '41': 'Europe/Zurich',
    '43': 'Europe/Vienna',
    '46': 'Europe/Stockholm',
    '47': 'Europe/Oslo',
    '45': 'Europe/Copenhagen',
    '358': 'Europe/Helsinki',

    # Asia Pacific
    '61': 'Australia/Sydney',
    '64': 'Pacific/Auckland',
    '65': 'Asia/Singapore',
    '852': 'Asia/Hong_Kong',
    '81': 'Asia/Tokyo',
    '82': 'Asia/Seoul',
    '86': 'Asia/Shanghai',
    '91': 'Asia/Kolkata',

    # Americas
    '52': 'America/Mexico_City',
    '55': 'America/Sao_Paulo',
    '54': 'America/Argentina/Buenos_Aires',
    '57': 'America/Bogota',
    '56': 'America/Santiago',
    '51': 'America/Lima',
}

# "COUNTRY-STATE" or "COUNTRY" keys
LOCATION_TIMEZONE_MAP = {
    'US-NY': 'America/New_York',
    'US-CA': 'America/Los_Angeles',
    'US-TX': 'America/Chicago',
    'US-FL': 'America/New_York',
    'US-IL': 'America/Chicago',
    'US-AZ': 'America/Phoenix',
    'US-CO': 'America/Denver',
    'US-WA': 'America/Los_Angeles',
    'US-MA': 'America/New_York',
    'US-GA': 'America/New_York',
    'CA-ON': 'America/Toronto',
    'CA-BC': 'America/Vancouver',
    'CA-QC': 'America/Toronto',
    'GB': 'Europe/London',
    'FR': 'Europe/Paris',
    'DE': 'Europe/Berlin',
    'AU': 'Australia/Sydney',
    'JP': 'Asia/Tokyo',
    'SG': 'Asia/Singapore',
}


def _is_known_timezone(name: Optional[str]) -> bool:
    return bool(name) and name in pytz.all_timezones_set


def detect_timezone_from_phone(phone: Optional[str]) -> Optional[str]:
    """Match the longest known prefix (4 digits down to 1) of the digits in a phone number."""
    if not phone:
        return None
    digits = re.sub(r'\D', '', phone)
    for length in range(4, 0, -1):
        timezone = PHONE_TIMEZONE_MAP.get(digits[:length])
        if timezone:
            return timezone
    return None


def detect_timezone_from_location(country: Optional[str], state: Optional[str] = None) -> Optional[str]:
    if not country:
        return None
    country = country.strip().upper()
    if state:
        timezone = LOCATION_TIMEZONE_MAP.get(f"{country}-{state.strip().upper()}")
        if timezone:
            return timezone
    return LOCATION_TIMEZONE_MAP.get(country)


def _detect_lead_timezone(self, lead: Lead) -> Dict[str, Any]:
    """Resolve a lead's timezone, reporting where it came from."""
    explicit = lead.timezone or (lead.custom_fields or {}).get('timezone')
    if explicit:
        if _is_known_timezone(explicit):
            return {'timezone': explicit, 'confidence': 'high', 'source': 'explicit'}
        logger.warning(f"Unknown timezone '{explicit}' for lead {lead.id}, trying detection")

    phone_timezone = detect_timezone_from_phone(lead.phone)
    if phone_timezone:
        return {'timezone': phone_timezone, 'confidence': 'medium', 'source': 'phone'}

    location_timezone = detect_timezone_from_location(lead.country, lead.state)
    if location_timezone:
        return {'timezone': location_timezone, 'confidence': 'medium', 'source': 'location'}

    organization = Organization.query.get(lead.org_id) if lead.org_id else None
    if organization and _is_known_timezone(organization.default_timezone):
        return {'timezone': organization.default_timezone, 'confidence': 'low', 'source': 'organization'}

    fallback = current_app.config.get('DEFAULT_TIMEZONE', 'UTC')
    return {'timezone': fallback, 'confidence': 'low', 'source': 'default'}


def _get_lead_timezone(self, lead: Lead) -> pytz.BaseTzInfo:
    """Get the pytz timezone used to schedule steps for a lead."""
    name = self._detect_lead_timezone(lead)['timezone']
    try:
        return pytz.timezone(name)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}' for lead {lead.id}, using UTC")
        return pytz.UTC


def _to_local(self, tz: pytz.BaseTzInfo, moment: datetime) -> datetime:
    """Convert a naive UTC datetime to an aware local datetime."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=pytz.UTC)
    return moment.astimezone(tz)


def _to_utc_naive(self, moment: datetime) -> datetime:
    return moment.astimezone(pytz.UTC).replace(tzinfo=None)


def _is_business_hours(self, tz: pytz.BaseTzInfo, moment: datetime,
                       window_start: int, window_end: int, skip_weekends: bool = True) -> bool:
    """Check if a UTC moment is inside the local business window."""
    local_time = self._to_local(tz, moment)
    if skip_weekends and local_time.weekday() >= 5:
        return False
    hour = local_time.hour + local_time.minute / 60.0
    return window_start <= hour < window_end
