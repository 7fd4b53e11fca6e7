"""Schema migrations and shape normalisers for persisted state.

Each migration maps data at version N to valid data at N + 1 and must
cope with partially malformed input by filling in defaults. Every legacy
session variant (taskIds lists, duration in seconds, rating/reflection
fields, live "active" shadow rows) is folded into the one canonical
StudySession shape by the 4 -> 5 step; business code only ever sees that
shape.

    0  pre-envelope value
    1  envelope with settings/workout/timer shapes
    2  + lastRolloverDate
    3  workout and settings re-normalised
    4  task categories, categoryId on tasks
    5  canonical sessions, subjects and tasks
"""
import math
import re

from StudyBackEnd.core import config
from StudyBackEnd.core.clock import iso_to_ms, ms_to_iso, normalize_iso, now_ms
from StudyBackEnd.core.models import new_id

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_record(value):
	return isinstance(value, dict)


def as_finite_number(value):
	if isinstance(value, bool):
		return None
	if isinstance(value, (int, float)):
		return value if math.isfinite(value) else None
	if isinstance(value, str):
		try:
			parsed = float(value)
		except ValueError:
			return None
		return parsed if math.isfinite(parsed) else None
	return None


def as_trimmed_string(value):
	if not isinstance(value, str):
		return None
	trimmed = value.strip()
	return trimmed or None


def is_iso_date(value):
	return isinstance(value, str) and bool(ISO_DATE_RE.match(value))


def to_iso_date(value):
	text = as_trimmed_string(value)
	if not text:
		return None
	if ISO_DATE_RE.match(text):
		return text
	ms = iso_to_ms(text)
	return ms_to_iso(ms)[:10] if ms is not None else None


def to_iso_datetime(value):
	"""ISO string or epoch-ms number -> canonical UTC ISO string."""
	number = as_finite_number(value) if not isinstance(value, str) else None
	if number is not None:
		return ms_to_iso(int(number))
	return normalize_iso(as_trimmed_string(value))


def _int_or(value, fallback):
	number = as_finite_number(value)
	return int(round(number)) if number is not None else fallback


def _tidy_number(value):
	"""2-decimal rounding, integral values kept as int."""
	rounded = round(value, 2)
	return int(rounded) if rounded == int(rounded) else rounded


def normalize_goal_number(value, fallback):
	if value is None or not math.isfinite(value) or value < 0:
		value = fallback
	return _tidy_number(value)


def minutes_to_hours(value):
	minutes = as_finite_number(value)
	if minutes is None or minutes < 0:
		return None
	return round(minutes / 60, 2)


def ensure_goal_settings_shape(candidate, fallback):
	if not is_record(candidate):
		return dict(fallback)

	daily_raw = as_finite_number(candidate.get("dailyHours"))
	if daily_raw is None:
		daily_raw = minutes_to_hours(candidate.get("dailyMinutes"))
	weekly_raw = as_finite_number(candidate.get("weeklyHours"))
	if weekly_raw is None:
		weekly_raw = minutes_to_hours(candidate.get("weeklyMinutes"))
	monthly_raw = as_finite_number(candidate.get("monthlyHours"))
	if monthly_raw is None:
		monthly_raw = minutes_to_hours(candidate.get("monthlyMinutes"))

	weekly = normalize_goal_number(weekly_raw if weekly_raw is not None else fallback["weeklyHours"], fallback["weeklyHours"])
	monthly = normalize_goal_number(monthly_raw if monthly_raw is not None else fallback["monthlyHours"], fallback["monthlyHours"])
	derived_daily = weekly / 7 if weekly > 0 else fallback["dailyHours"]
	daily = normalize_goal_number(daily_raw if daily_raw is not None else derived_daily, fallback["dailyHours"])

	return {"dailyHours": daily, "weeklyHours": weekly, "monthlyHours": monthly}


def is_goal_settings(value):
	return is_record(value) and all(
		as_finite_number(value.get(k)) is not None and not isinstance(value.get(k), str)
		for k in ("dailyHours", "weeklyHours", "monthlyHours")
	)


def ensure_timer_settings_shape(candidate):
	defaults = config.DEFAULT_TIMER_SETTINGS
	if not is_record(candidate):
		return dict(defaults)

	def minutes(name):
		return max(1, _int_or(candidate.get(name), defaults[name]))

	def flag(name):
		value = candidate.get(name)
		return value if isinstance(value, bool) else defaults[name]

	return {
		"focusMinutes": minutes("focusMinutes"),
		"shortBreakMinutes": minutes("shortBreakMinutes"),
		"longBreakMinutes": minutes("longBreakMinutes"),
		"longBreakInterval": minutes("longBreakInterval"),
		"autoStartNextPhase": flag("autoStartNextPhase"),
		"soundEnabled": flag("soundEnabled"),
		"preventAccidentalReset": flag("preventAccidentalReset"),
	}


def ensure_settings_shape(candidate):
	if not is_record(candidate):
		return {
			"goals": dict(config.DEFAULT_STUDY_GOALS),
			"timer": dict(config.DEFAULT_TIMER_SETTINGS),
			"theme": config.DEFAULT_THEME,
		}
	theme = candidate.get("theme")
	return {
		"goals": ensure_goal_settings_shape(candidate.get("goals"), config.DEFAULT_STUDY_GOALS),
		"timer": ensure_timer_settings_shape(candidate.get("timer")),
		"theme": theme if theme in config.THEMES else config.DEFAULT_THEME,
	}


def default_timer_snapshot():
	return {
		"mode": "stopwatch",
		"phase": "focus",
		"isRunning": False,
		"startedAtMs": None,
		"accumulatedMs": 0,
		"phaseStartedAtMs": None,
		"phaseAccumulatedMs": 0,
		"cycleCount": 0,
		"subjectId": None,
		"taskId": None,
		"sessionOpen": False,
	}


def ensure_timer_shape(candidate):
	if not is_record(candidate):
		return default_timer_snapshot()

	def ms_or_none(name):
		number = as_finite_number(candidate.get(name))
		return int(number) if number is not None and not isinstance(candidate.get(name), str) else None

	def non_negative(name):
		number = ms_or_none(name)
		return max(0, number) if number is not None else 0

	phase = candidate.get("phase")
	is_running = candidate.get("isRunning") is True
	started_at = ms_or_none("startedAtMs")
	phase_started_at = ms_or_none("phaseStartedAtMs")
	# A running snapshot without a start instant cannot be reconstructed.
	if is_running and started_at is None:
		is_running = False
	if not is_running:
		started_at = None
		phase_started_at = None
	elif phase_started_at is None:
		phase_started_at = started_at

	accumulated = non_negative("accumulatedMs")
	phase_accumulated = non_negative("phaseAccumulatedMs")
	# Snapshots written before the flag existed: time on the clock means open.
	session_open = candidate.get("sessionOpen")
	if not isinstance(session_open, bool):
		session_open = accumulated > 0 or phase_accumulated > 0
	session_open = session_open or is_running

	subject_id = candidate.get("subjectId")
	task_id = candidate.get("taskId")
	return {
		"mode": "pomodoro" if candidate.get("mode") == "pomodoro" else "stopwatch",
		"phase": phase if phase in config.POMODORO_PHASES else "focus",
		"isRunning": is_running,
		"startedAtMs": started_at,
		"accumulatedMs": accumulated,
		"phaseStartedAtMs": phase_started_at,
		"phaseAccumulatedMs": phase_accumulated,
		"cycleCount": non_negative("cycleCount"),
		"subjectId": subject_id if isinstance(subject_id, str) else None,
		"taskId": task_id if isinstance(task_id, str) else None,
		"sessionOpen": session_open,
	}


def sort_unique_iso_dates(dates):
	return sorted({d for d in dates if is_iso_date(d)})


def _ensure_workout_session(session):
	if not is_record(session) or not isinstance(session.get("id"), str):
		return None
	started_at = to_iso_datetime(session.get("startedAt"))
	ended_at = to_iso_datetime(session.get("endedAt"))
	if not started_at or not ended_at:
		return None

	duration = as_finite_number(session.get("durationMs"))
	if duration is not None and duration > 0 and not isinstance(session.get("durationMs"), str):
		duration_ms = int(round(duration))
	else:
		duration_ms = max(0, iso_to_ms(ended_at) - iso_to_ms(started_at))

	date = session.get("date")
	exercises = []
	for exercise in session.get("exercises") or []:
		if not is_record(exercise):
			continue
		name = exercise.get("name").strip() if isinstance(exercise.get("name"), str) else ""
		if not name:
			continue
		muscles = [m.strip() for m in exercise.get("muscles") or [] if isinstance(m, str) and m.strip()]
		exercises.append({"name": name, "muscles": muscles})

	return {
		"id": session["id"],
		"date": date if is_iso_date(date) else ended_at[:10],
		"durationMs": duration_ms,
		"startedAt": started_at,
		"endedAt": ended_at,
		"exercises": exercises,
		"createdAt": to_iso_datetime(session.get("createdAt")) or ended_at,
	}


def ensure_workout_shape(candidate):
	if not is_record(candidate):
		return {
			"enabled": False,
			"markedDays": [],
			"sessions": [],
			"goals": dict(config.DEFAULT_WORKOUT_GOALS),
		}
	marked = candidate.get("markedDays") if isinstance(candidate.get("markedDays"), list) else []
	sessions = candidate.get("sessions") if isinstance(candidate.get("sessions"), list) else []
	return {
		"enabled": candidate.get("enabled") is True,
		"markedDays": sort_unique_iso_dates([d for d in marked if isinstance(d, str)]),
		"sessions": [s for s in (_ensure_workout_session(item) for item in sessions) if s is not None],
		"goals": ensure_goal_settings_shape(candidate.get("goals"), config.DEFAULT_WORKOUT_GOALS),
	}


def is_workout_data(value):
	return (
		is_record(value)
		and isinstance(value.get("enabled"), bool)
		and isinstance(value.get("markedDays"), list)
		and isinstance(value.get("sessions"), list)
		and is_goal_settings(value.get("goals"))
	)


def is_app_settings(value):
	return (
		is_record(value)
		and is_goal_settings(value.get("goals"))
		and is_record(value.get("timer"))
		and set(config.DEFAULT_TIMER_SETTINGS) <= set(value["timer"])
		and isinstance(value.get("theme"), str)
	)


def is_timer_snapshot(value):
	# sessionOpen is optional; older v5 snapshots do not carry it.
	required = set(default_timer_snapshot()) - {"sessionOpen"}
	return is_record(value) and required <= set(value)


# -- legacy session shapes --------------------------------------------------

LEGACY_RATINGS = {
	"productive": "productive",
	"great": "productive",
	"good": "productive",
	"average": "average",
	"okay": "average",
	"ok": "average",
	"distracted": "distracted",
}


def map_rating(value):
	text = as_trimmed_string(value)
	return LEGACY_RATINGS.get(text.lower()) if text else None


def _first_number(record, *names):
	for name in names:
		value = record.get(name)
		number = as_finite_number(value) if not isinstance(value, str) else None
		if number is not None:
			return number
	return None


def _session_task_id(record):
	task_id = as_trimmed_string(record.get("taskId"))
	if task_id:
		return task_id
	task_ids = [t for t in record.get("taskIds") or [] if as_trimmed_string(t)]
	if task_ids:
		return task_ids[-1].strip()
	return as_trimmed_string(record.get("activeTaskId"))


def normalize_session(record, fallback_now_ms=None):
	"""Fold any historical session record into the canonical shape.

	Returns None for records that cannot count toward the ledger: live
	shadow rows, zero-length sessions and sessions with no time anchor.
	"""
	if not is_record(record):
		return None
	if record.get("isActive") is True or record.get("status") in ("running", "paused"):
		return None

	duration_ms = _first_number(record, "durationMs")
	if duration_ms is None or duration_ms <= 0:
		seconds = _first_number(record, "durationSeconds", "accumulatedTime", "duration")
		duration_ms = seconds * 1000 if seconds is not None else None

	started_ms = iso_to_ms(record.get("startedAt"))
	if started_ms is None:
		started_ms = _first_number(record, "startTime")
		if started_ms is None:
			started_ms = iso_to_ms(record.get("startTime"))
	ended_ms = iso_to_ms(record.get("endedAt"))
	if ended_ms is None:
		ended_ms = _first_number(record, "endTime")
		if ended_ms is None:
			ended_ms = iso_to_ms(record.get("endTime"))

	if (duration_ms is None or duration_ms <= 0) and started_ms is not None and ended_ms is not None:
		duration_ms = ended_ms - started_ms
	if duration_ms is None or duration_ms <= 0:
		return None
	duration_ms = min(int(round(duration_ms)), config.MAX_SESSION_SECONDS * 1000)
	if duration_ms <= 0:
		return None

	if ended_ms is None and started_ms is not None:
		ended_ms = started_ms + duration_ms
	if ended_ms is None:
		return None
	ended_ms = int(ended_ms)
	# endedAt is the bucketing key; startedAt is derived so the duration invariant holds.
	started_ms = ended_ms - duration_ms

	mode = "pomodoro" if record.get("mode") == "pomodoro" else "stopwatch"
	if mode == "pomodoro":
		phase = "focus"
	else:
		phase = record.get("phase") if record.get("phase") in config.SESSION_PHASES else "manual"

	rating = record.get("reflectionRating")
	if rating not in config.SESSION_RATINGS:
		rating = map_rating(record.get("reflectionRating")) or map_rating(record.get("rating"))

	comment = record.get("reflectionComment")
	if not isinstance(comment, str) or not comment.strip():
		comment = next(
			(record[k] for k in ("reflection", "note") if isinstance(record.get(k), str) and record[k].strip()),
			"",
		)

	ended_at = ms_to_iso(ended_ms)
	subject_id = record.get("subjectId")
	return {
		"id": as_trimmed_string(record.get("id")) or as_trimmed_string(record.get("sessionId")) or new_id(),
		"subjectId": subject_id if isinstance(subject_id, str) and subject_id else None,
		"taskId": _session_task_id(record),
		"startedAt": ms_to_iso(started_ms),
		"endedAt": ended_at,
		"durationMs": duration_ms,
		"mode": mode,
		"phase": phase,
		"reflectionRating": rating,
		"reflectionComment": comment.strip(),
		"createdAt": to_iso_datetime(record.get("createdAt")) or ended_at,
	}


def normalize_sessions(records):
	sessions = []
	seen = set()
	for record in records if isinstance(records, list) else []:
		session = normalize_session(record)
		if session is None:
			continue
		if session["id"] in seen:
			session["id"] = new_id()
		seen.add(session["id"])
		sessions.append(session)
	return sessions


def normalize_subjects(records, fallback_iso):
	subjects = []
	seen = set()
	for record in records if isinstance(records, list) else []:
		if not is_record(record):
			continue
		subject_id = as_trimmed_string(record.get("id"))
		name = as_trimmed_string(record.get("name"))
		if not subject_id or not name or subject_id in seen:
			continue
		seen.add(subject_id)
		created_at = to_iso_datetime(record.get("createdAt")) or fallback_iso
		subjects.append({
			"id": subject_id,
			"name": name,
			"color": as_trimmed_string(record.get("color")) or config.DEFAULT_SUBJECT_COLOR,
			"createdAt": created_at,
			"updatedAt": to_iso_datetime(record.get("updatedAt")) or created_at,
		})
	return subjects


def ensure_categories(records, at_ms):
	categories = []
	seen = set()
	for record in records if isinstance(records, list) else []:
		if not is_record(record):
			continue
		category_id = as_trimmed_string(record.get("id"))
		name = as_trimmed_string(record.get("name"))
		if not category_id or not name or category_id in seen:
			continue
		seen.add(category_id)
		categories.append({
			"id": category_id,
			"name": name,
			"createdAt": _int_or(record.get("createdAt"), at_ms),
		})
	if not categories:
		categories = [{"id": new_id(), "name": name, "createdAt": at_ms} for name in config.DEFAULT_TASK_CATEGORIES]
	return categories


def _category_for_bucket(categories, bucket):
	wanted = "backlog" if bucket == "backlog" else "school"
	for category in categories:
		if category["name"].lower() == wanted:
			return category["id"]
	return categories[0]["id"] if categories else None


def normalize_tasks(records, categories, fallback_iso):
	tasks = []
	seen = set()
	category_ids = {c["id"] for c in categories}
	for record in records if isinstance(records, list) else []:
		if not is_record(record):
			continue
		title = as_trimmed_string(record.get("title"))
		if not title:
			continue
		task_id = as_trimmed_string(record.get("id")) or new_id()
		if task_id in seen:
			task_id = new_id()
		seen.add(task_id)

		bucket = "backlog" if record.get("bucket") == "backlog" or record.get("isBacklog") is True else "daily"
		category_id = record.get("categoryId")
		if category_id not in category_ids:
			category_id = _category_for_bucket(categories, bucket)
		priority = record.get("priority")
		estimated = as_finite_number(record.get("estimatedMinutes"))
		created_at = to_iso_datetime(record.get("createdAt")) or fallback_iso
		completed_at = to_iso_datetime(record.get("completedAt"))
		last_worked = as_finite_number(record.get("lastWorkedAt"))
		subject_id = record.get("subjectId")
		description = record.get("description")

		tasks.append({
			"id": task_id,
			"title": title,
			"description": description if isinstance(description, str) else "",
			"subjectId": subject_id if isinstance(subject_id, str) and subject_id else None,
			"categoryId": category_id,
			"bucket": bucket,
			"priority": priority if priority in config.TASK_PRIORITIES else "medium",
			"estimatedMinutes": max(0, int(round(estimated))) if estimated is not None else None,
			"dueDate": to_iso_date(record.get("dueDate")),
			"completed": record.get("completed") is True or record.get("status") == "completed",
			"completedAt": completed_at,
			"order": max(0, _int_or(record.get("order"), 0)),
			"rollovers": max(0, _int_or(record.get("rollovers"), 0)),
			"totalTimeSeconds": max(0, _int_or(record.get("totalTimeSeconds"), _int_or(record.get("totalTimeSpent"), 0))),
			"sessionCount": max(0, _int_or(record.get("sessionCount"), 0)),
			"lastWorkedAt": int(last_worked) if last_worked is not None else None,
			"createdAt": created_at,
			"updatedAt": to_iso_datetime(record.get("updatedAt")) or created_at,
		})
	return tasks


# -- validators -------------------------------------------------------------

def is_profiles_state(value):
	if not is_record(value):
		return False
	active = value.get("activeProfileId")
	return (
		isinstance(value.get("version"), int)
		and (active is None or isinstance(active, str))
		and isinstance(value.get("profiles"), list)
		and all(
			is_record(p) and all(isinstance(p.get(k), str) for k in ("id", "name", "createdAt", "lastActiveAt"))
			for p in value["profiles"]
		)
	)


def is_user_data(value):
	if not is_record(value):
		return False
	return (
		isinstance(value.get("version"), int)
		and isinstance(value.get("profileId"), str)
		and isinstance(value.get("subjects"), list)
		and isinstance(value.get("tasks"), list)
		and isinstance(value.get("sessions"), list)
		and is_workout_data(value.get("workout"))
		and is_app_settings(value.get("settings"))
		and is_timer_snapshot(value.get("timer"))
		and isinstance(value.get("createdAt"), str)
		and isinstance(value.get("updatedAt"), str)
	)


# -- migration chains -------------------------------------------------------

def _profiles_v0(legacy):
	if not is_record(legacy) or not isinstance(legacy.get("profiles"), list):
		return {"version": 1, "activeProfileId": None, "profiles": []}
	now_iso = ms_to_iso(now_ms())
	profiles = []
	for item in legacy["profiles"]:
		if not is_record(item) or not isinstance(item.get("id"), str) or not isinstance(item.get("name"), str):
			continue
		created_at = item["createdAt"] if isinstance(item.get("createdAt"), str) else now_iso
		profiles.append({
			"id": item["id"],
			"name": item["name"],
			"createdAt": created_at,
			"lastActiveAt": item["lastActiveAt"] if isinstance(item.get("lastActiveAt"), str) else created_at,
		})
	active = legacy.get("activeProfileId")
	return {
		"version": 1,
		"activeProfileId": active if isinstance(active, str) else None,
		"profiles": profiles,
	}


PROFILE_MIGRATIONS = {
	0: _profiles_v0,
}


def _user_data_v0(legacy):
	now_iso = ms_to_iso(now_ms())
	if not is_record(legacy):
		legacy = {}
	profile_id = legacy.get("profileId")
	return {
		"version": 1,
		"profileId": profile_id if isinstance(profile_id, str) else "legacy",
		"subjects": legacy.get("subjects") if isinstance(legacy.get("subjects"), list) else [],
		"tasks": legacy.get("tasks") if isinstance(legacy.get("tasks"), list) else [],
		"sessions": legacy.get("sessions") if isinstance(legacy.get("sessions"), list) else [],
		"workout": ensure_workout_shape(legacy.get("workout")),
		"settings": ensure_settings_shape(legacy.get("settings")),
		"timer": ensure_timer_shape(legacy.get("timer")),
		"createdAt": legacy["createdAt"] if isinstance(legacy.get("createdAt"), str) else now_iso,
		"updatedAt": legacy["updatedAt"] if isinstance(legacy.get("updatedAt"), str) else now_iso,
	}


def _user_data_v1(legacy):
	data = dict(legacy) if is_record(legacy) else _user_data_v0(legacy)
	rollover = data.get("lastRolloverDate")
	data["version"] = 2
	data["lastRolloverDate"] = rollover if isinstance(rollover, str) else None
	return data


def _user_data_v2(legacy):
	data = dict(legacy) if is_record(legacy) else _user_data_v1(legacy)
	data["version"] = 3
	data["workout"] = ensure_workout_shape(data.get("workout"))
	data["settings"] = ensure_settings_shape(data.get("settings"))
	return data


def _user_data_v3(legacy):
	data = dict(legacy) if is_record(legacy) else _user_data_v2(legacy)
	categories = ensure_categories(data.get("categories"), now_ms())
	active = data.get("activeCategoryId")
	if active not in {c["id"] for c in categories}:
		active = categories[0]["id"]
	data["version"] = 4
	data["categories"] = categories
	data["activeCategoryId"] = active
	data["tasks"] = normalize_tasks(data.get("tasks"), categories, data.get("createdAt") or ms_to_iso(now_ms()))
	data["workout"] = ensure_workout_shape(data.get("workout"))
	data["settings"] = ensure_settings_shape(data.get("settings"))
	data["timer"] = ensure_timer_shape(data.get("timer"))
	return data


def normalize_user_data(legacy):
	"""4 -> 5: canonical sessions/subjects/tasks. Idempotent on version 5 data."""
	data = dict(legacy) if is_record(legacy) else _user_data_v3(legacy)
	now_iso = ms_to_iso(now_ms())
	created_at = data["createdAt"] if isinstance(data.get("createdAt"), str) else now_iso
	categories = ensure_categories(data.get("categories"), now_ms())
	active = data.get("activeCategoryId")
	if active not in {c["id"] for c in categories}:
		active = categories[0]["id"]
	profile_id = data.get("profileId")
	rollover = data.get("lastRolloverDate")
	return {
		"version": config.APP_SCHEMA_VERSION,
		"profileId": profile_id if isinstance(profile_id, str) else "legacy",
		"subjects": normalize_subjects(data.get("subjects"), created_at),
		"categories": categories,
		"activeCategoryId": active,
		"tasks": normalize_tasks(data.get("tasks"), categories, created_at),
		"sessions": normalize_sessions(data.get("sessions")),
		"workout": ensure_workout_shape(data.get("workout")),
		"settings": ensure_settings_shape(data.get("settings")),
		"timer": ensure_timer_shape(data.get("timer")),
		"lastRolloverDate": rollover if is_iso_date(rollover) else None,
		"createdAt": created_at,
		"updatedAt": data["updatedAt"] if isinstance(data.get("updatedAt"), str) else now_iso,
	}


USER_DATA_MIGRATIONS = {
	0: _user_data_v0,
	1: _user_data_v1,
	2: _user_data_v2,
	3: _user_data_v3,
	4: normalize_user_data,
}


def check_chain(migrations, target_version):
	"""Raise if any step below target_version has no migration."""
	missing = [v for v in range(target_version) if v not in migrations]
	if missing:
		raise RuntimeError(f"schema version {target_version} is missing migrations for {missing}")


check_chain(USER_DATA_MIGRATIONS, config.APP_SCHEMA_VERSION)
check_chain(PROFILE_MIGRATIONS, config.PROFILES_SCHEMA_VERSION)
