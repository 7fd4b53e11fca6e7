import logging
import os

# Schema versions gate the migration chains in repos/migrations.py.
APP_SCHEMA_VERSION = 5
PROFILES_SCHEMA_VERSION = 1

STORAGE_PREFIX = "study-dashboard"
PROFILES_KEY = f"{STORAGE_PREFIX}:profiles"
CONTINUE_SESSION_KEY = "study-continue-session"

def profile_data_key(profile_id: str) -> str:
	return f"{STORAGE_PREFIX}:data:{profile_id}"

MAX_PRODUCTIVE_MINUTES_PER_DAY = 15 * 60
MAX_SESSION_MINUTES = 10_000
MAX_SESSION_SECONDS = MAX_SESSION_MINUTES * 60

# Guards the Pomodoro auto-advance loop after a long absence.
MAX_PHASE_ADVANCES_PER_CHECK = 100

TIMER_MODES = ("stopwatch", "pomodoro")
POMODORO_PHASES = ("focus", "shortBreak", "longBreak")
SESSION_PHASES = ("focus", "manual")
SESSION_RATINGS = ("productive", "average", "distracted")
THEMES = ("light", "dark", "system")
TASK_BUCKETS = ("daily", "backlog")
TASK_PRIORITIES = ("low", "medium", "high")

DEFAULT_STUDY_GOALS = {
	"dailyHours": 3,
	"weeklyHours": 15,
	"monthlyHours": 60,
}

DEFAULT_WORKOUT_GOALS = {
	"dailyHours": 1,
	"weeklyHours": 5,
	"monthlyHours": 20,
}

DEFAULT_TIMER_SETTINGS = {
	"focusMinutes": 25,
	"shortBreakMinutes": 5,
	"longBreakMinutes": 15,
	"longBreakInterval": 4,
	"autoStartNextPhase": False,
	"soundEnabled": False,
	"preventAccidentalReset": True,
}

DEFAULT_THEME = "system"

DEFAULT_TASK_CATEGORIES = ("School", "Backlog")

DEFAULT_SUBJECT_COLOR = "#64748b"

def log_level() -> int:
	"""Level from STUDYTRACKER_LOG_LEVEL, INFO when unset or unknown."""
	name = os.environ.get("STUDYTRACKER_LOG_LEVEL", "INFO").strip().upper()
	level = logging.getLevelName(name)
	return level if isinstance(level, int) else logging.INFO

def log_to_file() -> bool:
	return os.environ.get("STUDYTRACKER_LOG_FILE", "").strip().lower() in ("1", "true", "yes", "on")
