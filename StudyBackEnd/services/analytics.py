"""Aggregations over the session ledger.

Everything here is a pure function of a session list and `now_ms`;
nothing is cached or persisted. Sessions are bucketed by the local
calendar date of their endedAt.
"""
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta

from StudyBackEnd.core import config
from StudyBackEnd.core.clock import (
	add_months, iso_to_ms, local_date, start_of_day_ms, start_of_month, start_of_week,
)

UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class GoalTotals:
	today_ms: int
	week_ms: int
	month_ms: int


@dataclass(frozen=True)
class Analytics:
	today_ms: int
	productivity_percent: float
	streak_days: int
	best_day: str
	best_day_minutes: int
	week_ms: int
	previous_week_ms: int
	month_ms: int
	previous_month_ms: int


def _ended(sessions):
	"""Yield (ended_ms, session) for sessions that count."""
	for session in sessions:
		if session.duration_ms <= 0:
			continue
		ended_ms = iso_to_ms(session.ended_at)
		if ended_ms is not None:
			yield ended_ms, session


def _sum_between(sessions, start_ms, end_ms):
	return sum(s.duration_ms for ended, s in _ended(sessions) if start_ms <= ended < end_ms)


def day_totals(sessions):
	"""Local date -> total ms."""
	totals = {}
	for ended_ms, session in _ended(sessions):
		day = local_date(ended_ms)
		totals[day] = totals.get(day, 0) + session.duration_ms
	return totals


def goal_totals(sessions, now_ms) -> GoalTotals:
	today = local_date(now_ms)
	week_start = start_of_week(today)
	month_start = start_of_month(today)
	return GoalTotals(
		today_ms=_sum_between(sessions, start_of_day_ms(today), start_of_day_ms(today + timedelta(days=1))),
		week_ms=_sum_between(sessions, start_of_day_ms(week_start), start_of_day_ms(week_start + timedelta(days=7))),
		month_ms=_sum_between(sessions, start_of_day_ms(month_start), start_of_day_ms(add_months(month_start, 1))),
	)


def goal_percent(completed_hours, goal_hours):
	if goal_hours is None or goal_hours <= 0:
		return 0.0
	return max(0.0, completed_hours / goal_hours * 100)


def streak_days(sessions, now_ms):
	"""Consecutive days with study, counted back from today.

	A day without study ends the streak, and that includes today.
	"""
	totals = day_totals(sessions)
	day = local_date(now_ms)
	streak = 0
	while totals.get(day, 0) > 0:
		streak += 1
		day -= timedelta(days=1)
	return streak


def productivity_percent(today_ms):
	minutes = today_ms / 60000
	ratio = minutes / config.MAX_PRODUCTIVE_MINUTES_PER_DAY * 100
	return min(100.0, max(0.0, ratio))


def best_day(sessions):
	"""(YYYY-MM-DD, minutes) of the day with most study, or (None, 0)."""
	totals = day_totals(sessions)
	if not totals:
		return None, 0
	day, total = max(totals.items(), key=lambda item: (item[1], item[0]))
	return day.isoformat(), round(total / 60000)


# -- rollups ---------------------------------------------------------------

def rollup_by_subject(sessions):
	"""[(subject id or 'unassigned', total ms)], largest first."""
	totals = {}
	for _, session in _ended(sessions):
		key = session.subject_id or UNASSIGNED
		totals[key] = totals.get(key, 0) + session.duration_ms
	return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def rollup_by_day(sessions, now_ms, days=14):
	"""Last `days` local dates ending today, oldest first, zero-filled."""
	totals = day_totals(sessions)
	today = local_date(now_ms)
	series = []
	for offset in range(days - 1, -1, -1):
		day = today - timedelta(days=offset)
		series.append((day.isoformat(), totals.get(day, 0)))
	return series


def rollup_by_week(sessions, now_ms, weeks=8):
	"""Keyed by the Monday that starts each week."""
	totals = {}
	for day, total in day_totals(sessions).items():
		week = start_of_week(day)
		totals[week] = totals.get(week, 0) + total
	current = start_of_week(local_date(now_ms))
	series = []
	for offset in range(weeks - 1, -1, -1):
		week = current - timedelta(weeks=offset)
		series.append((week.isoformat(), totals.get(week, 0)))
	return series


def rollup_by_month(sessions, now_ms, months=6):
	"""Keyed YYYY-MM."""
	totals = {}
	for day, total in day_totals(sessions).items():
		key = day.strftime("%Y-%m")
		totals[key] = totals.get(key, 0) + total
	current = start_of_month(local_date(now_ms))
	series = []
	for offset in range(months - 1, -1, -1):
		key = add_months(current, -offset).strftime("%Y-%m")
		series.append((key, totals.get(key, 0)))
	return series


def consistency_series(sessions, now_ms, days=14):
	"""Daily minutes with a trailing 7-day moving average."""
	points = OrderedDict((day, round(total / 60000)) for day, total in rollup_by_day(sessions, now_ms, days))
	minutes = list(points.values())
	result = []
	for index, (day, value) in enumerate(points.items()):
		window = minutes[max(0, index - 6):index + 1]
		result.append((day, value, round(sum(window) / len(window), 1)))
	return result


def compute_analytics(sessions, now_ms) -> Analytics:
	today = local_date(now_ms)
	week_start = start_of_week(today)
	month_start = start_of_month(today)
	totals = goal_totals(sessions, now_ms)
	best, best_minutes = best_day(sessions)
	return Analytics(
		today_ms=totals.today_ms,
		productivity_percent=productivity_percent(totals.today_ms),
		streak_days=streak_days(sessions, now_ms),
		best_day=best,
		best_day_minutes=best_minutes,
		week_ms=totals.week_ms,
		previous_week_ms=_sum_between(
			sessions, start_of_day_ms(week_start - timedelta(days=7)), start_of_day_ms(week_start)
		),
		month_ms=totals.month_ms,
		previous_month_ms=_sum_between(
			sessions, start_of_day_ms(add_months(month_start, -1)), start_of_day_ms(month_start)
		),
	)
