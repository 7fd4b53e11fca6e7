"""Flat legacy bundle: one JSON string per old storage key.

Export is one-way from the canonical UserData. The field names inside
each string are fixed; older copies of the app read them. Import accepts
the same bundle and rebuilds canonical data from it.
"""
import json
import math
from datetime import date

from StudyBackEnd.core import config
from StudyBackEnd.core.clock import iso_to_ms, local_date_str, ms_to_iso
from StudyBackEnd.core.models import new_id
from StudyBackEnd.repos import migrations as m

LEGACY_KEYS = (
	"study-sessions",
	"study-goals",
	"study-categories",
	"study-subjects",
	"study-timer-state",
	"app-settings",
	"workout-marked-days",
	"study-last-auto-move",
	"study-tasks",
	"workout-sessions",
	"workout-goals",
)


def _js_round(value):
	"""Half-up rounding as the legacy app used."""
	return int(math.floor(value + 0.5))


def _js_number(value):
	if isinstance(value, float) and value.is_integer():
		return int(value)
	return value


def _dumps(value):
	return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _drop_none(record, *keys):
	"""Legacy readers expect these keys to be absent rather than null."""
	return {k: v for k, v in record.items() if not (k in keys and v is None)}


def _legacy_color(value):
	trimmed = value.strip()
	if trimmed.startswith("hsl(") and trimmed.endswith(")"):
		return trimmed[4:-1].strip()
	return trimmed


def _category_for_bucket(bucket):
	return "School" if bucket == "daily" else "Backlog"


def _seconds(ms):
	return max(0, _js_round(ms / 1000))


def _goals(goals):
	return {
		"dailyHours": _js_number(goals.daily_hours),
		"weeklyHours": _js_number(goals.weekly_hours),
		"monthlyHours": _js_number(goals.monthly_hours),
	}


def build_legacy_export(data, now_ms) -> str:
	subjects = {s.id: s for s in data.subjects}
	tasks = {t.id: t for t in data.tasks}

	def subject_name(subject_id):
		subject = subjects.get(subject_id) if subject_id is not None else None
		return subject.name if subject else "Other"

	task_seconds = {}
	for session in data.sessions:
		if session.task_id:
			task_seconds[session.task_id] = task_seconds.get(session.task_id, 0) + _seconds(session.duration_ms)

	legacy_sessions = []
	for session in data.sessions:
		task = tasks.get(session.task_id) if session.task_id else None
		legacy_sessions.append(_drop_none({
			"id": session.id,
			"taskId": session.task_id or None,
			"subject": subject_name(session.subject_id),
			"category": _category_for_bucket(task.bucket) if task else "School",
			"duration": _seconds(session.duration_ms),
			"date": local_date_str(iso_to_ms(session.ended_at)),
			"startTime": session.started_at,
			"endTime": session.ended_at,
			"rating": session.reflection_rating,
			"note": session.reflection_comment.strip() or None,
		}, "taskId", "rating", "note"))

	today = local_date_str(now_ms)
	legacy_tasks = []
	for task in data.tasks:
		legacy_tasks.append(_drop_none({
			"title": task.title,
			"subject": subject_name(task.subject_id),
			"description": task.description,
			"scheduledDate": task.due_date or today,
			"plannedTime": task.estimated_minutes or 0,
			"id": task.id,
			"createdAt": task.created_at,
			"completed": task.completed,
			"isBacklog": task.bucket == "backlog",
			"originalDate": task.due_date,
			"category": _category_for_bucket(task.bucket),
			"accumulatedTime": task_seconds.get(task.id, 0),
			"completedAt": task.completed_at,
		}, "originalDate", "completedAt"))

	legacy_workouts = [
		{
			"id": session.id,
			"date": session.date,
			"duration": _seconds(session.duration_ms),
			"startTime": session.started_at,
			"endTime": session.ended_at,
			"exercises": [{"name": e.name, "muscles": list(e.muscles)} for e in session.exercises],
		}
		for session in data.workout.sessions
	]

	timer = data.timer
	timer_task = tasks.get(timer.task_id) if timer.task_id else None
	elapsed_ms = timer.accumulated_ms
	if timer.is_running and timer.started_at_ms is not None:
		elapsed_ms += max(0, now_ms - timer.started_at_ms)

	goals = data.settings.goals
	payload = {
		"study-sessions": _dumps(legacy_sessions),
		"study-goals": _dumps({
			**_goals(goals),
			"yearlyHours": _js_number(round(goals.monthly_hours * 12, 2)),
		}),
		"study-categories": _dumps([
			{"id": "school", "name": "School"},
			{"id": "backlog", "name": "Backlog"},
		]),
		"study-subjects": _dumps([
			{"id": s.id, "name": s.name, "color": _legacy_color(s.color)} for s in data.subjects
		]),
		"study-timer-state": _dumps({
			"isRunning": timer.is_running,
			"elapsedTime": _seconds(elapsed_ms),
			"currentSubject": subject_name(timer.subject_id),
			"currentTaskId": timer.task_id,
			"currentCategory": _category_for_bucket(timer_task.bucket) if timer_task else "School",
		}),
		"app-settings": _dumps({
			"workoutEnabled": data.workout.enabled,
			"theme": data.settings.theme,
		}),
		"workout-marked-days": _dumps(list(data.workout.marked_days)),
		"study-last-auto-move": _dumps(data.last_rollover_date),
		"study-tasks": _dumps(legacy_tasks),
		"workout-sessions": _dumps(legacy_workouts),
		"workout-goals": _dumps(_goals(data.workout.goals)),
	}
	return json.dumps(payload, indent=2, ensure_ascii=False)


# -- import ------------------------------------------------------------------

def looks_like_legacy_bundle(parsed):
	return isinstance(parsed, dict) and any(
		k in parsed for k in ("study-sessions", "study-tasks", "study-subjects", "workout-sessions", "workout-marked-days")
	)


def _field(parsed, key, fallback):
	value = parsed.get(key)
	if value is None:
		return fallback
	if isinstance(value, str):
		try:
			return json.loads(value)
		except ValueError:
			return fallback
	return value


def _normalize_color(value):
	if not value:
		return config.DEFAULT_SUBJECT_COLOR
	if value.startswith(("#", "rgb(", "hsl(")):
		return value
	parts = value.split()
	if len(parts) == 3 and parts[1].endswith("%") and parts[2].endswith("%"):
		return f"hsl({value})"
	return value


def _infer_priority(minutes):
	if minutes is None:
		return "medium"
	if minutes >= 180:
		return "high"
	if minutes >= 60:
		return "medium"
	return "low"


def import_legacy_bundle(parsed, profile_id, now_ms):
	"""Rebuild a canonical UserData dict from a flat bundle, or None."""
	if not looks_like_legacy_bundle(parsed):
		return None

	now_iso = ms_to_iso(now_ms)
	subjects = []
	by_name = {}
	used_ids = set()

	def upsert_subject(name, preferred_id=None, color=None):
		if not name:
			return None
		key = name.strip().lower()
		if key in by_name:
			return by_name[key]
		subject_id = preferred_id if preferred_id and preferred_id not in used_ids else new_id()
		used_ids.add(subject_id)
		subjects.append({
			"id": subject_id,
			"name": name.strip(),
			"color": _normalize_color(color),
			"createdAt": now_iso,
			"updatedAt": now_iso,
		})
		by_name[key] = subject_id
		return subject_id

	for item in _field(parsed, "study-subjects", []):
		if isinstance(item, dict):
			upsert_subject(m.as_trimmed_string(item.get("name")), m.as_trimmed_string(item.get("id")), m.as_trimmed_string(item.get("color")))

	tasks = []
	orders = {"daily": 0, "backlog": 0}
	for item in _field(parsed, "study-tasks", []):
		if not isinstance(item, dict) or not m.as_trimmed_string(item.get("title")):
			continue
		bucket = "backlog" if item.get("isBacklog") is True else "daily"
		orders[bucket] += 1
		planned = m.as_finite_number(item.get("plannedTime"))
		priority = (m.as_trimmed_string(item.get("priority")) or "").lower()
		description = "\n\n".join(dict.fromkeys(
			p for p in (m.as_trimmed_string(item.get("description")), m.as_trimmed_string(item.get("notes"))) if p
		))
		due = m.to_iso_date(item.get("scheduledDate"))
		original = m.to_iso_date(item.get("originalDate"))
		rollovers = 0
		if due and original:
			rollovers = max(0, (date.fromisoformat(due) - date.fromisoformat(original)).days)
		completed_at = m.to_iso_datetime(item.get("completedAt"))
		created_at = m.to_iso_datetime(item.get("createdAt")) or now_iso
		tasks.append({
			"id": m.as_trimmed_string(item.get("id")),
			"title": item["title"].strip(),
			"description": description,
			"subjectId": upsert_subject(m.as_trimmed_string(item.get("subject"))),
			"bucket": bucket,
			"priority": priority if priority in config.TASK_PRIORITIES else _infer_priority(planned),
			"estimatedMinutes": planned,
			"dueDate": due,
			"completed": item.get("completed") is True,
			"completedAt": completed_at,
			"order": orders[bucket],
			"rollovers": rollovers,
			"createdAt": created_at,
			"updatedAt": completed_at or created_at,
		})

	sessions = []
	for item in _field(parsed, "study-sessions", []):
		if not isinstance(item, dict):
			continue
		date_only = m.to_iso_date(item.get("date"))
		start = m.to_iso_datetime(item.get("startTime")) or (f"{date_only}T00:00:00.000Z" if date_only else None)
		sessions.append({
			"id": m.as_trimmed_string(item.get("id")),
			"subjectId": upsert_subject(m.as_trimmed_string(item.get("subject"))),
			"taskId": m.as_trimmed_string(item.get("taskId")),
			"startedAt": start,
			"endedAt": m.to_iso_datetime(item.get("endTime")),
			"duration": m.as_finite_number(item.get("duration")),
			"mode": "stopwatch",
			"phase": "manual",
			"rating": item.get("rating"),
			"note": item.get("note"),
		})

	workout_sessions = []
	for item in _field(parsed, "workout-sessions", []):
		if not isinstance(item, dict):
			continue
		started = m.to_iso_datetime(item.get("startTime"))
		ended = m.to_iso_datetime(item.get("endTime"))
		seconds = m.as_finite_number(item.get("duration")) or 0
		duration_ms = max(0, _js_round(seconds * 1000))
		if duration_ms <= 0 and started and ended:
			duration_ms = max(0, iso_to_ms(ended) - iso_to_ms(started))
		if duration_ms <= 0:
			continue
		if not ended:
			ended = ms_to_iso(iso_to_ms(started) + duration_ms) if started else now_iso
		if not started:
			started = ms_to_iso(iso_to_ms(ended) - duration_ms)
		workout_sessions.append({
			"id": m.as_trimmed_string(item.get("id")) or new_id(),
			"date": m.to_iso_date(item.get("date")) or ended[:10],
			"durationMs": duration_ms,
			"startedAt": started,
			"endedAt": ended,
			"exercises": item.get("exercises") or [],
			"createdAt": ended,
		})

	marked_days = [d for d in (m.to_iso_date(v) for v in _field(parsed, "workout-marked-days", [])) if d]
	settings = _field(parsed, "app-settings", {})
	settings = settings if isinstance(settings, dict) else {}
	timer = _field(parsed, "study-timer-state", {})
	timer = timer if isinstance(timer, dict) else {}
	elapsed = m.as_finite_number(timer.get("elapsedTime")) or 0

	data = {
		"version": 4,
		"profileId": profile_id,
		"subjects": subjects,
		"tasks": tasks,
		"sessions": sessions,
		"workout": {
			"enabled": settings.get("workoutEnabled") is True or bool(workout_sessions) or bool(marked_days),
			"markedDays": marked_days,
			"sessions": workout_sessions,
			"goals": m.ensure_goal_settings_shape(_field(parsed, "workout-goals", {}), config.DEFAULT_WORKOUT_GOALS),
		},
		"settings": {
			"goals": m.ensure_goal_settings_shape(_field(parsed, "study-goals", {}), config.DEFAULT_STUDY_GOALS),
			"timer": dict(config.DEFAULT_TIMER_SETTINGS),
			"theme": settings.get("theme"),
		},
		"timer": {
			"isRunning": False,
			"accumulatedMs": max(0, _js_round(elapsed * 1000)),
			"subjectId": upsert_subject(m.as_trimmed_string(timer.get("currentSubject"))),
			"taskId": m.as_trimmed_string(timer.get("currentTaskId")),
		},
		"lastRolloverDate": m.to_iso_date(_field(parsed, "study-last-auto-move", None)),
		"createdAt": now_iso,
		"updatedAt": now_iso,
	}
	return m.normalize_user_data(data)
