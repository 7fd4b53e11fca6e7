"""Timer state machine for stopwatch and Pomodoro modes.

The engine holds a TimerSnapshot and never reads the clock: every
operation receives `now_ms`. True elapsed time is always

    accumulated_ms + (now_ms - started_at_ms)   while running
    accumulated_ms                              otherwise

so a snapshot restored after a reload reproduces the same elapsed time
without any tick having been flushed. The phase_* pair follows the same
rule in Pomodoro mode.
"""
from dataclasses import dataclass, fields
from typing import Optional

from StudyBackEnd.core import config
from StudyBackEnd.core.errors import InvalidTimerTransition
from StudyBackEnd.core.models import StudySession, TimerSnapshot

IDLE = "idle"
RUNNING = "running"
PAUSED = "paused"


@dataclass(frozen=True)
class SessionDraft:
	"""Time taken off the clock, not yet recorded in the ledger."""
	subject_id: Optional[str]
	task_id: Optional[str]
	duration_ms: int
	ended_at_ms: int
	mode: str
	phase: str
	category_id: Optional[str] = None

	@property
	def started_at_ms(self):
		return self.ended_at_ms - self.duration_ms

	@property
	def is_study_time(self):
		"""Break phases are timed but never count as study."""
		return self.duration_ms > 0 and (self.mode == "stopwatch" or self.phase == "focus")


@dataclass(frozen=True)
class PhaseCompletion:
	finished_phase: str
	next_phase: str
	cycle_count: int
	ended_at_ms: int
	auto_started: bool
	draft: Optional[SessionDraft] = None
	# Filled in by the caller once the draft is in the ledger.
	session: Optional[StudySession] = None


def next_pomodoro_phase(phase, cycle_count, long_break_interval):
	"""Return (next phase, cycle count) after `phase` completes."""
	if phase == "focus":
		cycles = cycle_count + 1
		if cycles % max(1, long_break_interval) == 0:
			return "longBreak", cycles
		return "shortBreak", cycles
	return "focus", cycle_count


class TimerEngine:
	def __init__(self, snapshot: Optional[TimerSnapshot] = None):
		self.snapshot = snapshot if snapshot is not None else TimerSnapshot()

	@property
	def state(self):
		s = self.snapshot
		if s.is_running:
			return RUNNING
		if s.session_open:
			return PAUSED
		return IDLE

	@property
	def is_pomodoro(self):
		return self.snapshot.mode == "pomodoro"

	def _require(self, operation, *states):
		if self.state not in states:
			raise InvalidTimerTransition(operation, self.state)

	# -- reads --------------------------------------------------------------

	def display_elapsed(self, now_ms):
		s = self.snapshot
		if not s.is_running or s.started_at_ms is None:
			return s.accumulated_ms
		return s.accumulated_ms + max(0, now_ms - s.started_at_ms)

	def display_phase_elapsed(self, now_ms):
		s = self.snapshot
		if not s.is_running or s.phase_started_at_ms is None:
			return s.phase_accumulated_ms
		return s.phase_accumulated_ms + max(0, now_ms - s.phase_started_at_ms)

	def phase_remaining(self, now_ms, settings):
		required = settings.phase_duration_ms(self.snapshot.phase)
		return max(0, required - self.display_phase_elapsed(now_ms))

	# -- transitions --------------------------------------------------------

	def start(self, now_ms, subject_id, task_id=None, initial_elapsed_ms=None):
		"""Idle -> Running. `initial_elapsed_ms` seeds a continued session."""
		self._require("start", IDLE)
		if not subject_id:
			raise InvalidTimerTransition("start", self.state, "a subject must be selected")
		s = self.snapshot
		s.subject_id = subject_id
		s.task_id = task_id
		s.accumulated_ms = max(0, int(initial_elapsed_ms or 0))
		s.started_at_ms = now_ms
		s.is_running = True
		s.session_open = True
		if self.is_pomodoro:
			s.phase_started_at_ms = now_ms

	def pause(self, now_ms):
		self._require("pause", RUNNING)
		s = self.snapshot
		s.accumulated_ms = self.display_elapsed(now_ms)
		s.started_at_ms = None
		if self.is_pomodoro:
			s.phase_accumulated_ms = self.display_phase_elapsed(now_ms)
		s.phase_started_at_ms = None
		s.is_running = False

	def resume(self, now_ms):
		self._require("resume", PAUSED)
		s = self.snapshot
		s.started_at_ms = now_ms
		if self.is_pomodoro:
			s.phase_started_at_ms = now_ms
		s.is_running = True

	def stop(self, now_ms, category_id=None) -> SessionDraft:
		"""Take all time off the clock and return it as a draft."""
		self._require("stop", RUNNING, PAUSED)
		s = self.snapshot
		draft = SessionDraft(
			subject_id=s.subject_id,
			task_id=s.task_id,
			duration_ms=self.display_elapsed(now_ms),
			ended_at_ms=now_ms,
			mode=s.mode,
			phase=s.phase,
			category_id=category_id,
		)
		self._reset(keep_task=True)
		return draft

	def cancel(self):
		"""Discard the time on the clock and the task link; no draft."""
		self._require("cancel", RUNNING, PAUSED)
		self._reset(keep_task=False)

	def _reset(self, keep_task, mode=None):
		# In place: the snapshot object is shared with the owning UserData.
		s = self.snapshot
		fresh = TimerSnapshot(
			mode=mode or s.mode,
			subject_id=s.subject_id,
			task_id=s.task_id if keep_task else None,
		)
		for f in fields(fresh):
			setattr(s, f.name, getattr(fresh, f.name))

	def set_mode(self, mode):
		if mode not in config.TIMER_MODES:
			raise ValueError(f"unknown timer mode {mode!r}")
		self._require("change mode", IDLE)
		self._reset(keep_task=True, mode=mode)

	def select_subject(self, subject_id):
		self.snapshot.subject_id = subject_id

	def switch_task(self, task_id, now_ms, category_id=None) -> Optional[SessionDraft]:
		"""Link the clock to another task.

		Time already on the clock belongs to the previous task and comes
		back as a draft; the clock keeps running from zero for the new one.
		Pomodoro phase progress is unaffected.
		"""
		s = self.snapshot
		if task_id == s.task_id:
			return None
		elapsed = self.display_elapsed(now_ms)
		draft = None
		if self.state != IDLE and elapsed > 0:
			draft = SessionDraft(
				subject_id=s.subject_id,
				task_id=s.task_id,
				duration_ms=elapsed,
				ended_at_ms=now_ms,
				mode=s.mode,
				phase=s.phase,
				category_id=category_id,
			)
			s.accumulated_ms = 0
			if s.is_running:
				s.started_at_ms = now_ms
		s.task_id = task_id
		return draft

	def complete_phase_if_due(self, now_ms, settings) -> Optional[PhaseCompletion]:
		"""Advance one Pomodoro phase if the running phase has reached its length.

		The phase ends at its due instant, not at `now_ms`, so a check that
		arrives late (or after a reload) does not over-count. Call again
		until it returns None to catch up several auto-started phases.
		"""
		s = self.snapshot
		if not self.is_pomodoro or not s.is_running:
			return None
		required = settings.phase_duration_ms(s.phase)
		phase_elapsed = self.display_phase_elapsed(now_ms)
		if phase_elapsed < required:
			return None

		due_ms = now_ms - (phase_elapsed - required)
		finished = s.phase
		next_phase, cycles = next_pomodoro_phase(finished, s.cycle_count, settings.long_break_interval)

		draft = None
		if finished == "focus":
			draft = SessionDraft(
				subject_id=s.subject_id,
				task_id=s.task_id,
				duration_ms=self.display_elapsed(due_ms),
				ended_at_ms=due_ms,
				mode=s.mode,
				phase=finished,
			)

		auto = settings.auto_start_next_phase
		s.phase = next_phase
		s.cycle_count = cycles
		s.accumulated_ms = 0
		s.phase_accumulated_ms = 0
		s.is_running = auto
		s.session_open = auto
		s.started_at_ms = due_ms if auto else None
		s.phase_started_at_ms = due_ms if auto else None

		return PhaseCompletion(
			finished_phase=finished,
			next_phase=next_phase,
			cycle_count=cycles,
			ended_at_ms=due_ms,
			auto_started=auto,
			draft=draft,
		)
