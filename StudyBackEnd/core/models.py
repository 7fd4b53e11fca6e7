"""Data model for a profile's persisted state.

Every record serialises to the camelCase JSON shape that is written to
storage. `from_dict` expects input that already went through the
normalisers in repos/migrations.py.
"""
import copy
import uuid
from dataclasses import dataclass, field, asdict
from typing import Optional

from StudyBackEnd.core import config


def new_id() -> str:
	return str(uuid.uuid4())


def _camel(name: str) -> str:
	head, *rest = name.split("_")
	return head + "".join(part.title() for part in rest)


def _to_camel_dict(obj) -> dict:
	return {_camel(k): v for k, v in asdict(obj).items()}


@dataclass
class Profile:
	id: str
	name: str
	created_at: str
	last_active_at: str

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		return cls(
			id=d["id"],
			name=d["name"],
			created_at=d["createdAt"],
			last_active_at=d["lastActiveAt"],
		)


@dataclass
class ProfilesState:
	version: int = config.PROFILES_SCHEMA_VERSION
	active_profile_id: Optional[str] = None
	profiles: list = field(default_factory=list)

	def find(self, profile_id) -> Optional[Profile]:
		for profile in self.profiles:
			if profile.id == profile_id:
				return profile
		return None

	def to_dict(self):
		return {
			"version": self.version,
			"activeProfileId": self.active_profile_id,
			"profiles": [p.to_dict() for p in self.profiles],
		}

	@classmethod
	def from_dict(cls, d):
		return cls(
			version=d["version"],
			active_profile_id=d.get("activeProfileId"),
			profiles=[Profile.from_dict(p) for p in d.get("profiles", [])],
		)


@dataclass
class TimerSnapshot:
	mode: str = "stopwatch"
	phase: str = "focus"
	is_running: bool = False
	started_at_ms: Optional[int] = None
	accumulated_ms: int = 0
	phase_started_at_ms: Optional[int] = None
	phase_accumulated_ms: int = 0
	cycle_count: int = 0
	subject_id: Optional[str] = None
	task_id: Optional[str] = None
	# True from start until stop, cancel or a phase end that waits for the user.
	session_open: bool = False

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		open_ = d.get("sessionOpen")
		if not isinstance(open_, bool):
			open_ = bool(d["isRunning"] or d["accumulatedMs"] > 0 or d["phaseAccumulatedMs"] > 0)
		return cls(
			mode=d["mode"],
			phase=d["phase"],
			is_running=d["isRunning"],
			started_at_ms=d["startedAtMs"],
			accumulated_ms=d["accumulatedMs"],
			phase_started_at_ms=d["phaseStartedAtMs"],
			phase_accumulated_ms=d["phaseAccumulatedMs"],
			cycle_count=d["cycleCount"],
			subject_id=d["subjectId"],
			task_id=d["taskId"],
			session_open=open_,
		)


@dataclass
class StudySession:
	id: str
	subject_id: Optional[str]
	task_id: Optional[str]
	started_at: str
	ended_at: str
	duration_ms: int
	mode: str = "stopwatch"
	phase: str = "manual"
	reflection_rating: Optional[str] = None
	reflection_comment: str = ""
	created_at: str = ""

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		return cls(
			id=d["id"],
			subject_id=d.get("subjectId"),
			task_id=d.get("taskId"),
			started_at=d["startedAt"],
			ended_at=d["endedAt"],
			duration_ms=d["durationMs"],
			mode=d.get("mode", "stopwatch"),
			phase=d.get("phase", "manual"),
			reflection_rating=d.get("reflectionRating"),
			reflection_comment=d.get("reflectionComment", ""),
			created_at=d.get("createdAt") or d["endedAt"],
		)


@dataclass
class Subject:
	id: str
	name: str
	color: str
	created_at: str
	updated_at: str

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		return cls(
			id=d["id"],
			name=d["name"],
			color=d.get("color", config.DEFAULT_SUBJECT_COLOR),
			created_at=d["createdAt"],
			updated_at=d.get("updatedAt", d["createdAt"]),
		)


@dataclass
class TaskCategory:
	id: str
	name: str
	created_at: int

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		return cls(id=d["id"], name=d["name"], created_at=d["createdAt"])


@dataclass
class Task:
	id: str
	title: str
	created_at: str
	updated_at: str
	description: str = ""
	subject_id: Optional[str] = None
	category_id: Optional[str] = None
	bucket: str = "daily"
	priority: str = "medium"
	estimated_minutes: Optional[int] = None
	due_date: Optional[str] = None
	completed: bool = False
	completed_at: Optional[str] = None
	order: int = 0
	rollovers: int = 0
	total_time_seconds: int = 0
	session_count: int = 0
	last_worked_at: Optional[int] = None

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		return cls(
			id=d["id"],
			title=d["title"],
			created_at=d["createdAt"],
			updated_at=d.get("updatedAt", d["createdAt"]),
			description=d.get("description", ""),
			subject_id=d.get("subjectId"),
			category_id=d.get("categoryId"),
			bucket=d.get("bucket", "daily"),
			priority=d.get("priority", "medium"),
			estimated_minutes=d.get("estimatedMinutes"),
			due_date=d.get("dueDate"),
			completed=d.get("completed", False),
			completed_at=d.get("completedAt"),
			order=d.get("order", 0),
			rollovers=d.get("rollovers", 0),
			total_time_seconds=d.get("totalTimeSeconds", 0),
			session_count=d.get("sessionCount", 0),
			last_worked_at=d.get("lastWorkedAt"),
		)


@dataclass
class GoalSettings:
	daily_hours: float
	weekly_hours: float
	monthly_hours: float

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		return cls(
			daily_hours=d["dailyHours"],
			weekly_hours=d["weeklyHours"],
			monthly_hours=d["monthlyHours"],
		)


@dataclass
class TimerSettings:
	focus_minutes: int = 25
	short_break_minutes: int = 5
	long_break_minutes: int = 15
	long_break_interval: int = 4
	auto_start_next_phase: bool = False
	sound_enabled: bool = False
	prevent_accidental_reset: bool = True

	def phase_duration_ms(self, phase: str) -> int:
		if phase == "focus":
			return self.focus_minutes * 60_000
		if phase == "shortBreak":
			return self.short_break_minutes * 60_000
		return self.long_break_minutes * 60_000

	def to_dict(self):
		return _to_camel_dict(self)

	@classmethod
	def from_dict(cls, d):
		return cls(
			focus_minutes=d["focusMinutes"],
			short_break_minutes=d["shortBreakMinutes"],
			long_break_minutes=d["longBreakMinutes"],
			long_break_interval=d["longBreakInterval"],
			auto_start_next_phase=d["autoStartNextPhase"],
			sound_enabled=d["soundEnabled"],
			prevent_accidental_reset=d["preventAccidentalReset"],
		)


@dataclass
class AppSettings:
	goals: GoalSettings = field(default_factory=lambda: GoalSettings.from_dict(config.DEFAULT_STUDY_GOALS))
	timer: TimerSettings = field(default_factory=TimerSettings)
	theme: str = config.DEFAULT_THEME

	def to_dict(self):
		return {
			"goals": self.goals.to_dict(),
			"timer": self.timer.to_dict(),
			"theme": self.theme,
		}

	@classmethod
	def from_dict(cls, d):
		return cls(
			goals=GoalSettings.from_dict(d["goals"]),
			timer=TimerSettings.from_dict(d["timer"]),
			theme=d["theme"],
		)


@dataclass
class WorkoutExercise:
	name: str
	muscles: list = field(default_factory=list)

	def to_dict(self):
		return {"name": self.name, "muscles": list(self.muscles)}


@dataclass
class WorkoutSession:
	id: str
	date: str
	duration_ms: int
	started_at: str
	ended_at: str
	exercises: list = field(default_factory=list)
	created_at: str = ""

	def to_dict(self):
		return {
			"id": self.id,
			"date": self.date,
			"durationMs": self.duration_ms,
			"startedAt": self.started_at,
			"endedAt": self.ended_at,
			"exercises": [e.to_dict() for e in self.exercises],
			"createdAt": self.created_at,
		}

	@classmethod
	def from_dict(cls, d):
		return cls(
			id=d["id"],
			date=d["date"],
			duration_ms=d["durationMs"],
			started_at=d["startedAt"],
			ended_at=d["endedAt"],
			exercises=[WorkoutExercise(e["name"], list(e.get("muscles", []))) for e in d.get("exercises", [])],
			created_at=d.get("createdAt") or d["endedAt"],
		)


@dataclass
class WorkoutData:
	enabled: bool = False
	marked_days: list = field(default_factory=list)
	sessions: list = field(default_factory=list)
	goals: GoalSettings = field(default_factory=lambda: GoalSettings.from_dict(config.DEFAULT_WORKOUT_GOALS))

	def to_dict(self):
		return {
			"enabled": self.enabled,
			"markedDays": list(self.marked_days),
			"sessions": [s.to_dict() for s in self.sessions],
			"goals": self.goals.to_dict(),
		}

	@classmethod
	def from_dict(cls, d):
		return cls(
			enabled=d["enabled"],
			marked_days=list(d["markedDays"]),
			sessions=[WorkoutSession.from_dict(s) for s in d["sessions"]],
			goals=GoalSettings.from_dict(d["goals"]),
		)


@dataclass
class UserData:
	profile_id: str
	created_at: str
	updated_at: str
	version: int = config.APP_SCHEMA_VERSION
	subjects: list = field(default_factory=list)
	categories: list = field(default_factory=list)
	active_category_id: Optional[str] = None
	tasks: list = field(default_factory=list)
	sessions: list = field(default_factory=list)
	workout: WorkoutData = field(default_factory=WorkoutData)
	settings: AppSettings = field(default_factory=AppSettings)
	timer: TimerSnapshot = field(default_factory=TimerSnapshot)
	last_rollover_date: Optional[str] = None

	def copy(self) -> "UserData":
		return copy.deepcopy(self)

	def find_subject(self, subject_id) -> Optional[Subject]:
		return next((s for s in self.subjects if s.id == subject_id), None)

	def find_task(self, task_id) -> Optional[Task]:
		return next((t for t in self.tasks if t.id == task_id), None)

	def find_category(self, category_id) -> Optional[TaskCategory]:
		return next((c for c in self.categories if c.id == category_id), None)

	def to_dict(self):
		return {
			"version": self.version,
			"profileId": self.profile_id,
			"subjects": [s.to_dict() for s in self.subjects],
			"categories": [c.to_dict() for c in self.categories],
			"activeCategoryId": self.active_category_id,
			"tasks": [t.to_dict() for t in self.tasks],
			"sessions": [s.to_dict() for s in self.sessions],
			"workout": self.workout.to_dict(),
			"settings": self.settings.to_dict(),
			"timer": self.timer.to_dict(),
			"lastRolloverDate": self.last_rollover_date,
			"createdAt": self.created_at,
			"updatedAt": self.updated_at,
		}

	@classmethod
	def from_dict(cls, d):
		return cls(
			version=d["version"],
			profile_id=d["profileId"],
			subjects=[Subject.from_dict(s) for s in d["subjects"]],
			categories=[TaskCategory.from_dict(c) for c in d.get("categories", [])],
			active_category_id=d.get("activeCategoryId"),
			tasks=[Task.from_dict(t) for t in d["tasks"]],
			sessions=[StudySession.from_dict(s) for s in d["sessions"]],
			workout=WorkoutData.from_dict(d["workout"]),
			settings=AppSettings.from_dict(d["settings"]),
			timer=TimerSnapshot.from_dict(d["timer"]),
			last_rollover_date=d.get("lastRolloverDate"),
			created_at=d["createdAt"],
			updated_at=d["updatedAt"],
		)


def default_categories(now_ms: int) -> list:
	return [TaskCategory(id=new_id(), name=name, created_at=now_ms) for name in config.DEFAULT_TASK_CATEGORIES]


def empty_user_data(profile_id: str, now_iso: str, now_ms: int) -> UserData:
	"""Fresh state for a new profile: no subjects, tasks or sessions."""
	categories = default_categories(now_ms)
	return UserData(
		profile_id=profile_id,
		created_at=now_iso,
		updated_at=now_iso,
		categories=categories,
		active_category_id=categories[0].id,
	)
