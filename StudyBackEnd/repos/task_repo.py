"""Hooks into the task store: per-task time derived from the ledger."""
from dataclasses import replace

from StudyBackEnd.core.clock import iso_to_ms


def task_seconds(sessions):
	"""Map task id -> (seconds, session count, last ended ms)."""
	totals = {}
	for session in sessions:
		if not session.task_id or session.duration_ms <= 0:
			continue
		seconds, count, last = totals.get(session.task_id, (0, 0, None))
		ended_ms = iso_to_ms(session.ended_at)
		if ended_ms is not None:
			last = ended_ms if last is None else max(last, ended_ms)
		totals[session.task_id] = (seconds + session.duration_ms // 1000, count + 1, last)
	return totals


def recompute_task_totals(tasks, sessions):
	"""Return tasks with totalTimeSeconds/sessionCount/lastWorkedAt rebuilt from sessions."""
	totals = task_seconds(sessions)
	result = []
	for task in tasks:
		seconds, count, last = totals.get(task.id, (0, 0, None))
		result.append(replace(task, total_time_seconds=seconds, session_count=count, last_worked_at=last))
	return result
