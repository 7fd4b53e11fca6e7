import time
from datetime import datetime, timezone, timedelta, date

def now_ms() -> int:
	"""Return current wall-clock time as integer epoch milliseconds."""
	return int(time.time() * 1000)

def ms_to_iso(ms: int) -> str:
	"""Return UTC ISO8601 string with millisecond precision and a Z suffix."""
	dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
	return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")

def utc_now_iso() -> str:
	"""Return current UTC time as ISO8601 string."""
	return ms_to_iso(now_ms())

def iso_to_ms(value):
	"""Parse an ISO8601 string into epoch ms. Returns None when unparseable.

	Naive strings are read as local time.
	"""
	if not isinstance(value, str) or not value.strip():
		return None
	text = value.strip()
	if text.endswith("Z"):
		text = text[:-1] + "+00:00"
	try:
		dt = datetime.fromisoformat(text)
	except ValueError:
		return None
	return int(round(dt.timestamp() * 1000))

def normalize_iso(value):
	"""Re-render a parseable ISO8601 string in canonical UTC form, else None."""
	ms = iso_to_ms(value)
	return ms_to_iso(ms) if ms is not None else None

def local_datetime(ms: int) -> datetime:
	return datetime.fromtimestamp(ms / 1000)

def local_date(ms: int) -> date:
	"""Local calendar date of an epoch ms timestamp."""
	return local_datetime(ms).date()

def local_date_str(ms: int) -> str:
	"""Return local date of `ms` as YYYY-MM-DD string."""
	return local_date(ms).isoformat()

def start_of_day_ms(day: date) -> int:
	return int(datetime(day.year, day.month, day.day).timestamp() * 1000)

def start_of_week(day: date) -> date:
	"""Monday of the week containing `day`."""
	return day - timedelta(days=day.weekday())

def start_of_month(day: date) -> date:
	return day.replace(day=1)

def add_months(day: date, months: int) -> date:
	"""First day of the month `months` away from the month containing `day`."""
	index = day.year * 12 + (day.month - 1) + months
	return date(index // 12, index % 12 + 1, 1)

def fmt_hms(seconds: int) -> str:
	"""Format seconds as HH:MM:SS."""
	h = seconds // 3600
	m = (seconds % 3600) // 60
	s = seconds % 60
	return f"{h:02}:{m:02}:{s:02}"
