"""Versioned envelope around every persisted value.

Stored form: {"version": int, "updatedAt": iso, "data": ...}. Reading
never raises; any value that cannot be brought to the current version
yields the caller's default and leaves the stored bytes untouched.
"""
import json

from StudyBackEnd.core.clock import utc_now_iso
from StudyBackEnd.core.errors import CorruptEnvelope, MissingMigration
from StudyBackEnd.core.log import setup_logger

logger = setup_logger(__name__)


def is_envelope(value):
	return (
		isinstance(value, dict)
		and isinstance(value.get("version"), int)
		and not isinstance(value.get("version"), bool)
		and "data" in value
	)


def wrap(data, version, updated_at=None):
	return {
		"version": version,
		"updatedAt": updated_at or utc_now_iso(),
		"data": data,
	}


def serialize(data, version, updated_at=None) -> str:
	return json.dumps(wrap(data, version, updated_at), ensure_ascii=False)


def run_migrations(data, from_version, target_version, migrations, key="<value>"):
	"""Apply migrations[v] for v = from_version .. target_version - 1."""
	working = data
	version = from_version
	while version < target_version:
		migrate = migrations.get(version)
		if migrate is None:
			raise MissingMigration(key, version, target_version)
		working = migrate(working)
		version += 1
	return working


def decode(raw, version, migrations=None, validate=None, key="<value>"):
	"""Turn raw stored text into current-version data.

	Raises CorruptEnvelope or MissingMigration; `load` maps both to defaults.
	"""
	try:
		parsed = json.loads(raw)
	except (TypeError, ValueError) as exc:
		raise CorruptEnvelope(key, f"invalid JSON ({exc})") from exc

	# Values written before envelopes existed count as version 0.
	if is_envelope(parsed):
		stored_version = parsed["version"]
		data = parsed["data"]
	else:
		stored_version = 0
		data = parsed

	if stored_version > version:
		raise CorruptEnvelope(key, f"stored version {stored_version} is newer than {version}")
	if stored_version < 0:
		raise CorruptEnvelope(key, f"negative version {stored_version}")

	data = run_migrations(data, stored_version, version, migrations or {}, key)

	if validate is not None and not validate(data):
		raise CorruptEnvelope(key, "shape validation failed")
	return data


def load(storage, key, version, default_factory, migrations=None, validate=None):
	"""Read `key` and return current-version data, or default_factory()."""
	raw = storage.get(key)
	if raw is None:
		return default_factory()
	try:
		return decode(raw, version, migrations, validate, key)
	except (CorruptEnvelope, MissingMigration) as exc:
		logger.warning(f"Falling back to defaults for {key!r}: {exc}")
		return default_factory()
	except (TypeError, ValueError, KeyError, AttributeError) as exc:
		logger.warning(f"Falling back to defaults for {key!r}: migration failed ({exc})")
		return default_factory()


def save(storage, key, data, version, updated_at=None):
	"""Write `data` under `key`. StorageUnavailable propagates."""
	storage.set(key, serialize(data, version, updated_at))
