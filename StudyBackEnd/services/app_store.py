"""The application store: one object owning the active profile's state.

Callers read through `data` (a deep copy) and change state only through
the action methods below. Every action that changes state ends in
`_commit`, which stamps updatedAt and hands the whole UserData to
ProfileRegistry.save_user_data.
"""
import json
from dataclasses import dataclass, replace
from typing import Optional

from StudyBackEnd.core import config
from StudyBackEnd.core.clock import ms_to_iso, now_ms
from StudyBackEnd.core.errors import InvalidTimerTransition, ReferentialGap
from StudyBackEnd.core.log import setup_logger
from StudyBackEnd.core.models import Subject, Task, UserData, new_id
from StudyBackEnd.repos import legacy_export
from StudyBackEnd.repos.migrations import is_record, is_user_data, normalize_user_data
from StudyBackEnd.repos.profile_repo import ProfileRegistry
from StudyBackEnd.repos.session_repo import SessionLedger, session_from_draft
from StudyBackEnd.repos.task_repo import recompute_task_totals
from StudyBackEnd.services import analytics
from StudyBackEnd.services.timer_engine import IDLE, TimerEngine

logger = setup_logger(__name__)

EXPORT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class PendingReflection:
	session_id: str
	subject_id: Optional[str]
	duration_ms: int


@dataclass(frozen=True)
class ContinuationRequest:
	session_id: str
	duration_ms: int
	subject_id: Optional[str]
	task_id: Optional[str]
	category_id: Optional[str]
	mode: str = "same"

	def to_dict(self):
		return {
			"sessionId": self.session_id,
			"durationMs": self.duration_ms,
			"subjectId": self.subject_id,
			"taskId": self.task_id,
			"categoryId": self.category_id,
			"mode": self.mode,
		}


class AppStore:
	def __init__(self, storage, clock=now_ms):
		self.storage = storage
		self.clock = clock
		self.registry = ProfileRegistry(storage, clock)
		self.pending_reflection = None
		self._data = None
		self._load_active()

	def _load_active(self):
		profile = self.registry.active_profile()
		self._data = self.registry.load_user_data(profile.id) if profile else None
		self.pending_reflection = None

	def _commit(self):
		self._data.updated_at = ms_to_iso(self.clock())
		self.registry.save_user_data(self._data)

	def _has_profile(self, action):
		if self._data is None:
			logger.warning(f"No active profile, ignoring {action}")
			return False
		return True

	def _engine(self):
		return TimerEngine(self._data.timer)

	def _ledger(self):
		return SessionLedger(self._data.sessions)

	def _refresh_task_totals(self):
		self._data.tasks = recompute_task_totals(self._data.tasks, self._data.sessions)

	# -- snapshots ----------------------------------------------------------

	@property
	def data(self) -> Optional[UserData]:
		return self._data.copy() if self._data is not None else None

	@property
	def profiles(self):
		return self.registry.profiles

	def active_profile(self):
		return self.registry.active_profile()

	@property
	def timer_state(self):
		return self._engine().state if self._data is not None else IDLE

	def display_elapsed(self, at_ms=None):
		if self._data is None:
			return 0
		return self._engine().display_elapsed(self.clock() if at_ms is None else at_ms)

	def phase_remaining(self, at_ms=None):
		if self._data is None:
			return 0
		return self._engine().phase_remaining(self.clock() if at_ms is None else at_ms, self._data.settings.timer)

	def analytics(self):
		if self._data is None:
			return None
		return analytics.compute_analytics(self._data.sessions, self.clock())

	# -- profiles -----------------------------------------------------------

	def create_profile(self, name):
		profile = self.registry.create_profile(name)
		if profile is not None:
			self._load_active()
		return profile

	def switch_profile(self, profile_id):
		if not self.registry.switch_profile(profile_id):
			return False
		self._load_active()
		return True

	def rename_profile(self, profile_id, name):
		return self.registry.rename_profile(profile_id, name)

	def reload(self):
		"""Drop in-memory state and read the active profile back from storage."""
		self.registry.state = self.registry.load_profiles()
		self._load_active()

	def reset_current_profile_data(self):
		profile = self.registry.active_profile()
		if profile is None:
			return None
		self._data = self.registry.reset_user_data(profile.id)
		self.pending_reflection = None
		return self.data

	# -- timer --------------------------------------------------------------

	def _timer_call(self, name, action):
		"""Run an engine transition; invalid transitions become logged no-ops."""
		try:
			result = action(self._engine())
		except InvalidTimerTransition as exc:
			logger.warning(f"Ignoring timer {name}: {exc}")
			return False, None
		return True, result

	def _category_for_task(self, task_id):
		task = self._data.find_task(task_id) if task_id else None
		return task.category_id if task else None

	def _record(self, draft, at_ms):
		"""Turn a draft into a ledger session. Break time and empty drafts are dropped."""
		if draft is None or not draft.is_study_time:
			return None
		session = session_from_draft(draft, at_ms)
		if not self._ledger().append(session):
			return None
		self.pending_reflection = PendingReflection(session.id, session.subject_id, session.duration_ms)
		self._refresh_task_totals()
		return session

	def start_timer(self, subject_id=None, task_id=None, initial_elapsed_ms=None):
		if not self._has_profile("start"):
			return False
		snapshot = self._data.timer
		subject_id = subject_id or snapshot.subject_id
		task_id = task_id if task_id is not None else snapshot.task_id
		ok, _ = self._timer_call(
			"start", lambda e: e.start(self.clock(), subject_id, task_id, initial_elapsed_ms)
		)
		if ok:
			self._commit()
			logger.info(f"Timer started ({snapshot.mode}) for subject {subject_id}")
		return ok

	def pause_timer(self):
		if not self._has_profile("pause"):
			return False
		ok, _ = self._timer_call("pause", lambda e: e.pause(self.clock()))
		if ok:
			self._commit()
		return ok

	def resume_timer(self):
		if not self._has_profile("resume"):
			return False
		ok, _ = self._timer_call("resume", lambda e: e.resume(self.clock()))
		if ok:
			self._commit()
		return ok

	def stop_timer(self):
		"""Stop the clock and record its time. Returns the new session or None."""
		if not self._has_profile("stop"):
			return None
		at_ms = self.clock()
		category_id = self._category_for_task(self._data.timer.task_id)
		ok, draft = self._timer_call("stop", lambda e: e.stop(at_ms, category_id))
		if not ok:
			return None
		session = self._record(draft, at_ms)
		self._commit()
		return session

	def cancel_timer(self, force=False):
		"""Throw away the time on the clock.

		With preventAccidentalReset on, a clock holding time is only
		cancelled when `force` is set.
		"""
		if not self._has_profile("cancel"):
			return False
		guarded = self._data.settings.timer.prevent_accidental_reset
		if guarded and not force and self.display_elapsed() > 0:
			logger.info("Cancel needs confirmation, timer left as is")
			return False
		ok, _ = self._timer_call("cancel", lambda e: e.cancel())
		if ok:
			self._commit()
			logger.info("Timer cancelled")
		return ok

	def set_timer_mode(self, mode):
		if not self._has_profile("mode change"):
			return False
		ok, _ = self._timer_call("mode change", lambda e: e.set_mode(mode))
		if ok:
			self._commit()
		return ok

	def select_subject(self, subject_id):
		if not self._has_profile("subject selection"):
			return
		self._engine().select_subject(subject_id)
		self._commit()

	def select_task(self, task_id):
		"""Link the clock to a task; time already on the clock is recorded first.

		Returns the session closed off for the previous task, if any.
		"""
		if not self._has_profile("task selection"):
			return None
		at_ms = self.clock()
		engine = self._engine()
		category_id = self._category_for_task(engine.snapshot.task_id)
		draft = engine.switch_task(task_id, at_ms, category_id)
		session = self._record(draft, at_ms)
		task = self._data.find_task(task_id) if task_id else None
		if task is not None and task.subject_id and engine.state == IDLE:
			engine.select_subject(task.subject_id)
		self._commit()
		return session

	def complete_phase_if_due(self):
		"""Advance any Pomodoro phases that have run out. Returns the completions."""
		if self._data is None:
			return []
		at_ms = self.clock()
		engine = self._engine()
		settings = self._data.settings.timer
		completions = []
		for _ in range(config.MAX_PHASE_ADVANCES_PER_CHECK):
			completion = engine.complete_phase_if_due(at_ms, settings)
			if completion is None:
				break
			recorded = self._record(completion.draft, completion.ended_at_ms)
			completions.append(replace(completion, session=recorded))
			logger.info(f"Pomodoro {completion.finished_phase} finished, next {completion.next_phase}")
		if completions:
			self._commit()
		return completions

	def update_timer_settings(self, **changes):
		if not self._has_profile("timer settings"):
			return None
		self._data.settings.timer = replace(self._data.settings.timer, **changes)
		self._commit()
		return self._data.settings.timer

	# -- sessions -----------------------------------------------------------

	def save_session_reflection(self, session_id, rating, comment=""):
		if not self._has_profile("reflection"):
			return None
		updated = self._ledger().update(session_id, reflection_rating=rating, reflection_comment=comment)
		if updated is None:
			return None
		if self.pending_reflection and self.pending_reflection.session_id == session_id:
			self.pending_reflection = None
		self._commit()
		return updated

	def dismiss_pending_reflection(self):
		"""Leave the latest session unrated."""
		self.pending_reflection = None

	def update_session_duration(self, session_id, duration_ms):
		if not self._has_profile("duration edit"):
			return None
		updated = self._ledger().edit_duration(session_id, duration_ms)
		if updated is None:
			return None
		self._refresh_task_totals()
		self._commit()
		return updated

	def delete_session(self, session_id):
		"""Remove a session. Returns it so callers can see which task lost time."""
		if not self._has_profile("session delete"):
			return None
		removed = self._ledger().delete(session_id)
		if removed is None:
			return None
		if self.pending_reflection and self.pending_reflection.session_id == session_id:
			self.pending_reflection = None
		self._refresh_task_totals()
		self._commit()
		return removed

	# -- subjects and tasks -------------------------------------------------

	def add_subject(self, name, color=None):
		trimmed = name.strip() if isinstance(name, str) else ""
		if not trimmed or not self._has_profile("add subject"):
			return None
		stamp = ms_to_iso(self.clock())
		subject = Subject(
			id=new_id(),
			name=trimmed,
			color=color or config.DEFAULT_SUBJECT_COLOR,
			created_at=stamp,
			updated_at=stamp,
		)
		self._data.subjects.append(subject)
		self._commit()
		return subject

	def delete_subject(self, subject_id):
		"""Sessions keep the dangling id; they roll up as unassigned."""
		if not self._has_profile("delete subject"):
			return False
		before = len(self._data.subjects)
		self._data.subjects = [s for s in self._data.subjects if s.id != subject_id]
		if len(self._data.subjects) == before:
			return False
		if self._data.timer.subject_id == subject_id and self.timer_state == IDLE:
			self._data.timer.subject_id = None
		self._commit()
		return True

	def add_task(self, title, subject_id=None, bucket="daily", estimated_minutes=None, due_date=None):
		trimmed = title.strip() if isinstance(title, str) else ""
		if not trimmed or not self._has_profile("add task"):
			return None
		if bucket not in config.TASK_BUCKETS:
			raise ValueError(f"unknown task bucket {bucket!r}")
		wanted = "backlog" if bucket == "backlog" else "school"
		category = next(
			(c for c in self._data.categories if c.name.lower() == wanted),
			self._data.categories[0] if self._data.categories else None,
		)
		stamp = ms_to_iso(self.clock())
		task = Task(
			id=new_id(),
			title=trimmed,
			created_at=stamp,
			updated_at=stamp,
			subject_id=subject_id,
			category_id=category.id if category else None,
			bucket=bucket,
			estimated_minutes=estimated_minutes,
			due_date=due_date,
			order=sum(1 for t in self._data.tasks if t.bucket == bucket) + 1,
		)
		self._data.tasks.append(task)
		self._commit()
		return task

	def delete_task(self, task_id):
		if not self._has_profile("delete task"):
			return False
		before = len(self._data.tasks)
		self._data.tasks = [t for t in self._data.tasks if t.id != task_id]
		if len(self._data.tasks) == before:
			return False
		if self._data.timer.task_id == task_id and self.timer_state == IDLE:
			self._data.timer.task_id = None
		self._commit()
		return True

	# -- continuing a past session ------------------------------------------

	def request_continuation(self, session_id, mode="same"):
		"""Check a session's links and leave a handoff for the timer view.

		Raises ReferentialGap when the session, its subject, task or the
		task's category no longer exists.
		"""
		if not self._has_profile("continuation"):
			return None
		session = self._ledger().get(session_id)
		if session is None:
			raise ReferentialGap("session", session_id)
		task = None
		if session.task_id:
			task = self._data.find_task(session.task_id)
			if task is None:
				raise ReferentialGap("task", session.task_id)
		if session.subject_id and self._data.find_subject(session.subject_id) is None:
			raise ReferentialGap("subject", session.subject_id)
		if task is not None and task.category_id and self._data.find_category(task.category_id) is None:
			raise ReferentialGap("category", task.category_id)

		request = ContinuationRequest(
			session_id=session.id,
			duration_ms=session.duration_ms,
			subject_id=session.subject_id,
			task_id=session.task_id,
			category_id=task.category_id if task else None,
			mode=mode,
		)
		self.storage.set(config.CONTINUE_SESSION_KEY, json.dumps(request.to_dict()))
		return request

	def take_continuation(self):
		"""Read the handoff once; it is removed whether or not it parses."""
		raw = self.storage.get(config.CONTINUE_SESSION_KEY)
		if raw is None:
			return None
		self.storage.remove(config.CONTINUE_SESSION_KEY)
		try:
			payload = json.loads(raw)
			return ContinuationRequest(
				session_id=payload["sessionId"],
				duration_ms=int(payload.get("durationMs") or 0),
				subject_id=payload.get("subjectId"),
				task_id=payload.get("taskId"),
				category_id=payload.get("categoryId"),
				mode=payload.get("mode") or "same",
			)
		except (ValueError, KeyError, TypeError) as exc:
			logger.warning(f"Discarding unreadable continuation handoff: {exc}")
			return None

	def continue_session(self):
		"""Start the clock from a pending handoff.

		In "same" mode the old session's time moves back onto the clock and
		the session leaves the ledger, so stopping records it once. Any
		other mode only preselects the subject.
		"""
		if not self._has_profile("continue") or self.timer_state != IDLE:
			return False
		request = self.take_continuation()
		if request is None:
			return False
		if request.mode != "same":
			self.select_subject(request.subject_id)
			return True

		session = self._ledger().get(request.session_id)
		seed = session.duration_ms if session is not None else 0
		ok, _ = self._timer_call(
			"continue", lambda e: e.start(self.clock(), request.subject_id, request.task_id, seed)
		)
		if not ok:
			return False
		if session is not None:
			self._ledger().delete(session.id)
			self._refresh_task_totals()
		self._commit()
		logger.info(f"Continuing session {request.session_id} from {seed} ms")
		return True

	# -- import / export ----------------------------------------------------

	def export_profile_data(self) -> Optional[str]:
		profile = self.registry.active_profile()
		if profile is None or self._data is None:
			return None
		return json.dumps({
			"schemaVersion": EXPORT_SCHEMA_VERSION,
			"exportedAt": ms_to_iso(self.clock()),
			"profile": profile.to_dict(),
			"data": self._data.to_dict(),
		}, indent=2, ensure_ascii=False)

	def export_legacy(self) -> Optional[str]:
		if self._data is None:
			return None
		return legacy_export.build_legacy_export(self._data, self.clock())

	def import_profile_data(self, raw):
		"""Replace the active profile's data from an export.

		Accepts a full-profile export or a flat legacy bundle. Returns the
		imported snapshot, or None when nothing usable was found.
		"""
		if not self._has_profile("import"):
			return None
		try:
			parsed = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
		except ValueError as exc:
			logger.warning(f"Import is not JSON: {exc}")
			return None

		profile_id = self._data.profile_id
		if is_record(parsed) and is_record(parsed.get("data")):
			candidate = normalize_user_data(parsed["data"])
		else:
			candidate = legacy_export.import_legacy_bundle(parsed, profile_id, self.clock())
		if candidate is None or not is_user_data(candidate):
			logger.warning("Import has no recognisable profile data")
			return None

		candidate["profileId"] = profile_id
		candidate["timer"] = self._data.timer.to_dict() if self.timer_state != IDLE else candidate["timer"]
		self._data = UserData.from_dict(candidate)
		self._refresh_task_totals()
		self.pending_reflection = None
		self._commit()
		logger.info(f"Imported {len(self._data.sessions)} sessions into profile {profile_id}")
		return self.data
