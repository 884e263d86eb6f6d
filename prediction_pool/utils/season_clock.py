"""
Season clock: derives the current season and round from wall-clock time.

All functions take an explicit ``now`` so they stay pure.
"""

from flask import current_app, has_app_context

from prediction_pool.utils.timezone_utils import (
    convert_to_app_timezone,
    ensure_utc,
    get_utc_time,
)

# First month (1-based) of a new season: July
SEASON_ROLLOVER_MONTH = 7


def season_id_for_year(start_year):
    return f"{start_year}-{start_year + 1}"


def current_season_id(now, rollover_month=SEASON_ROLLOVER_MONTH):
    """
    Season identifier for the given instant.

    Before the rollover month the previous season is still running
    ("2024-2025" in May 2025); from the rollover month onward the new one is
    ("2025-2026" in July 2025).
    """
    if now.month >= rollover_month:
        return season_id_for_year(now.year)
    return season_id_for_year(now.year - 1)


def current_round_number(rounds, now):
    """
    Number of the round that is currently open or being played.

    Args:
        rounds: objects with ``number`` and ``start_time`` attributes
        now: the reference instant

    Returns:
        The first round (by number) that is either the last timed round or
        whose following timed round has not started yet. None when no round
        has a start time.
    """
    now = ensure_utc(now)
    timed = sorted(
        (r for r in rounds if r.start_time is not None), key=lambda r: r.number
    )
    if not timed:
        return None

    for index, round_ in enumerate(timed):
        if index == len(timed) - 1:
            return round_.number
        if ensure_utc(timed[index + 1].start_time) > now:
            return round_.number


def is_betting_open(start_time, now):
    """Predictions are accepted until the lock instant; no lock means open"""
    if start_time is None:
        return True
    return ensure_utc(now) <= ensure_utc(start_time)


def resolve_season_id(season_id=None, now=None):
    """Use the given season id or derive it from the application clock"""
    if season_id:
        return season_id

    rollover_month = SEASON_ROLLOVER_MONTH
    if has_app_context():
        rollover_month = current_app.config.get(
            "SEASON_ROLLOVER_MONTH", SEASON_ROLLOVER_MONTH
        )

    local_now = convert_to_app_timezone(now or get_utc_time())
    return current_season_id(local_now, rollover_month)
