"""
Business day and timezone handling for POS timestamps.

Soft Restaurant sends local wall-clock timestamps without an offset. They are
localized to the integration's timezone before storage, and late-night sales
are attributed to the previous business day using the "4 AM day start".

Example: A sale at 2:00 AM on Jan 2nd belongs to the Jan 1st business day.
"""
from datetime import datetime, date, timedelta
from typing import Optional

import pytz


# Restaurant business day starts at 4:00 AM
BUSINESS_DAY_START_HOUR = 4


def localize_pos_timestamp(dt: datetime, restaurant_timezone: Optional[str] = None) -> datetime:
    """
    Attach a timezone to a POS timestamp.

    Naive datetimes are interpreted as wall-clock time in the restaurant
    timezone (UTC when none is configured). Aware datetimes are kept as sent.

    Examples:
        >>> localize_pos_timestamp(datetime(2024, 1, 15, 14, 30), "America/Mexico_City").isoformat()
        '2024-01-15T14:30:00-06:00'
    """
    if dt.tzinfo is not None:
        return dt
    tz = pytz.timezone(restaurant_timezone) if restaurant_timezone else pytz.UTC
    return tz.localize(dt)


def get_business_date(dt: datetime, restaurant_timezone: Optional[str] = None) -> date:
    """
    Convert a datetime to its business date, respecting the 4 AM cutoff.

    Args:
        dt: The datetime to convert (naive values are treated as local time)
        restaurant_timezone: IANA timezone string (e.g., "America/Mexico_City")
                            If None, assumes dt is already in restaurant local time

    Returns:
        The business date this sale belongs to

    Examples:
        # Sale at 2:00 AM on Jan 2 -> Business day Jan 1
        >>> get_business_date(datetime(2024, 1, 2, 2, 0))
        datetime.date(2024, 1, 1)

        # Sale at 5:00 AM on Jan 2 -> Business day Jan 2
        >>> get_business_date(datetime(2024, 1, 2, 5, 0))
        datetime.date(2024, 1, 2)
    """
    if restaurant_timezone and dt.tzinfo is not None:
        dt_local = dt.astimezone(pytz.timezone(restaurant_timezone))
    else:
        # Already in local time (or timezone-naive)
        dt_local = dt

    # If before 4 AM, attribute to previous day
    if dt_local.hour < BUSINESS_DAY_START_HOUR:
        return dt_local.date() - timedelta(days=1)
    return dt_local.date()
