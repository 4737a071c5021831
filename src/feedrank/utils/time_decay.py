from datetime import datetime

from feedrank.utils.datetime import ensure_utc


def apply_time_decay(ts, reference_time, half_life_hours=168.0):
    """Apply exponential decay based on the time difference from a reference point.

    Args:
        ts (datetime): The timestamp of the item.
        reference_time (datetime or str): The reference time for decay calculation.
        half_life_hours (float): Age at which the multiplier reaches 0.5. Default is 7 days.

    Items from the future (clock skew) are not boosted; the multiplier is capped at 1.0.
    """
    if isinstance(reference_time, str):
        reference_time = datetime.fromisoformat(reference_time.replace('Z', '+00:00'))

    reference_time = ensure_utc(reference_time)
    ts = ensure_utc(ts)

    delta_hours = max(0.0, (reference_time - ts).total_seconds() / 3600.0)
    if half_life_hours <= 0:
        return 1.0
    return 0.5 ** (delta_hours / half_life_hours)
