from PySide6.QtCore import QObject, Signal, QTimer

from StudyBackEnd.core.log import setup_logger
from StudyBackEnd.services.timer_engine import IDLE

logger = setup_logger(__name__)


class TimerService(QObject):
	"""Drives the display from a 1 s QTimer.

	Ticks only read the store (and let it close due Pomodoro phases); the
	elapsed time is always recomputed from the stored snapshot, so a
	missed or late tick never loses time.
	"""
	tick = Signal(int)  # emits elapsed milliseconds
	state_changed = Signal(str)  # emits 'idle', 'running', 'paused'
	session_recorded = Signal(str)  # emits the new session id
	phase_completed = Signal(str, str)  # finished phase, next phase

	def __init__(self, store, interval_ms=1000):
		super().__init__()
		self.store = store
		self._last_state = store.timer_state
		self._timer = QTimer(self)
		self._timer.setInterval(interval_ms)
		self._timer.timeout.connect(self._on_tick)
		self._sync()

	@property
	def ticking(self):
		return self._timer.isActive()

	def _sync(self):
		"""Match the QTimer and listeners to the store's timer state."""
		state = self.store.timer_state
		if state == "running" and not self._timer.isActive():
			self._timer.start()
		elif state != "running" and self._timer.isActive():
			self._timer.stop()
		if state != self._last_state:
			self._last_state = state
			self.state_changed.emit(state)
		self.tick.emit(self.store.display_elapsed())

	def start(self, subject_id=None, task_id=None):
		if self.store.start_timer(subject_id, task_id):
			self._sync()

	def pause_resume(self):
		state = self.store.timer_state
		if state == "running":
			self.store.pause_timer()
		elif state == "paused":
			self.store.resume_timer()
		self._sync()

	def stop(self):
		session = self.store.stop_timer()
		self._sync()
		if session is not None:
			self.session_recorded.emit(session.id)
		return session

	def cancel(self, force=False):
		cancelled = self.store.cancel_timer(force=force)
		self._sync()
		return cancelled

	def resume_active_session(self):
		"""Pick up a snapshot restored from storage, running or paused."""
		if self.store.timer_state != IDLE:
			logger.info(f"Restored {self.store.timer_state} timer at {self.store.display_elapsed()} ms")
		self._sync()

	def _on_tick(self):
		for completion in self.store.complete_phase_if_due():
			self.phase_completed.emit(completion.finished_phase, completion.next_phase)
			if completion.session is not None:
				self.session_recorded.emit(completion.session.id)
		self._sync()
