"""Append-only ledger of finalised study sessions.

The ledger works on the session list of a profile's UserData in place;
persisting it is the caller's job (AppStore funnels every change through
ProfileRegistry.save_user_data).
"""
from dataclasses import replace

from StudyBackEnd.core import config
from StudyBackEnd.core.clock import iso_to_ms, ms_to_iso
from StudyBackEnd.core.log import setup_logger
from StudyBackEnd.core.models import StudySession, new_id

logger = setup_logger(__name__)

# Fields a plain update may touch; time fields go through edit_duration.
EDITABLE_FIELDS = {"reflection_rating", "reflection_comment", "subject_id"}


def session_from_draft(draft, created_at_ms=None):
	"""Build a StudySession from a timer SessionDraft.

	A clock left running for days is cut to the longest session the
	ledger accepts, ending at the draft's end instant.
	"""
	limit_ms = config.MAX_SESSION_SECONDS * 1000
	duration_ms = min(draft.duration_ms, limit_ms)
	if duration_ms < draft.duration_ms:
		logger.warning(f"Session of {draft.duration_ms} ms clamped to {limit_ms} ms")
	return StudySession(
		id=new_id(),
		subject_id=draft.subject_id,
		task_id=draft.task_id,
		started_at=ms_to_iso(draft.ended_at_ms - duration_ms),
		ended_at=ms_to_iso(draft.ended_at_ms),
		duration_ms=duration_ms,
		mode=draft.mode,
		phase="focus" if draft.mode == "pomodoro" else "manual",
		created_at=ms_to_iso(created_at_ms if created_at_ms is not None else draft.ended_at_ms),
	)


class SessionLedger:
	def __init__(self, sessions):
		self._sessions = sessions

	def __len__(self):
		return len(self._sessions)

	def __iter__(self):
		return iter(self._sessions)

	def get(self, session_id):
		return next((s for s in self._sessions if s.id == session_id), None)

	def append(self, session: StudySession) -> bool:
		"""Add a finalised session. Zero or negative durations are ignored."""
		if session.duration_ms <= 0:
			logger.debug(f"Ignoring zero-length session {session.id}")
			return False
		if self.get(session.id) is not None:
			logger.warning(f"Session {session.id} already recorded, ignoring duplicate append")
			return False
		self._sessions.append(session)
		logger.info(f"Recorded session {session.id} ({session.duration_ms} ms)")
		return True

	def update(self, session_id, **patch):
		"""Change reflection or descriptive fields of a session.

		Returns the updated session, or None if the id is unknown.
		"""
		illegal = set(patch) - EDITABLE_FIELDS
		if illegal:
			raise ValueError(f"fields {sorted(illegal)} cannot be changed with update()")
		rating = patch.get("reflection_rating")
		if rating is not None and rating not in config.SESSION_RATINGS:
			raise ValueError(f"unknown reflection rating {rating!r}")
		if "reflection_comment" in patch:
			patch["reflection_comment"] = (patch["reflection_comment"] or "").strip()

		for index, session in enumerate(self._sessions):
			if session.id == session_id:
				updated = replace(session, **patch)
				self._sessions[index] = updated
				return updated
		return None

	def edit_duration(self, session_id, duration_ms):
		"""Deliberate correction of a session's length.

		endedAt is kept and startedAt moves, so the session stays in the
		same calendar buckets. Returns the updated session or None.
		"""
		if duration_ms is None or duration_ms <= 0 or duration_ms > config.MAX_SESSION_SECONDS * 1000:
			return None
		duration_ms = int(duration_ms)
		for index, session in enumerate(self._sessions):
			if session.id == session_id:
				ended_ms = iso_to_ms(session.ended_at)
				updated = replace(
					session,
					duration_ms=duration_ms,
					started_at=ms_to_iso(ended_ms - duration_ms),
				)
				self._sessions[index] = updated
				logger.info(f"Corrected session {session_id}: {session.duration_ms} -> {duration_ms} ms")
				return updated
		return None

	def delete(self, session_id):
		"""Remove a session outright. Returns the removed session or None."""
		for index, session in enumerate(self._sessions):
			if session.id == session_id:
				del self._sessions[index]
				logger.info(f"Deleted session {session_id}")
				return session
		return None

	def awaiting_reflection(self):
		return [s for s in self._sessions if s.reflection_rating is None]
