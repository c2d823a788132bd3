"""Human-readable durations for lockout messages."""

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def _plural(value: int, singular: str, plural: str) -> str:
    return f"{value} {singular if value == 1 else plural}"


def human_time_diff(seconds: float) -> str:
    """Render a duration as e.g. ``"45 secs"``, ``"5 mins"``, ``"2 hours"``.

    Values are rounded to the nearest unit and never drop below 1.
    """
    seconds = abs(seconds)
    if seconds < MINUTE:
        return _plural(max(1, round(seconds)), "sec", "secs")
    if seconds < HOUR:
        return _plural(max(1, round(seconds / MINUTE)), "min", "mins")
    if seconds < DAY:
        return _plural(max(1, round(seconds / HOUR)), "hour", "hours")
    return _plural(max(1, round(seconds / DAY)), "day", "days")
