"""Key/value storage adapters.

Reads never raise: an unreadable store is the same as an absent key.
Writes raise StorageUnavailable so the caller learns about lost data.
"""
import sqlite3
from pathlib import Path

from StudyBackEnd.core.clock import utc_now_iso
from StudyBackEnd.core.errors import StorageUnavailable
from StudyBackEnd.core.log import setup_logger
from StudyBackEnd.core.paths import db_path

logger = setup_logger(__name__)

SCHEMA_PATH = Path(__file__).parent.parent / "SQL" / "schema.sql"


class StorageAdapter:
	"""get/set/remove over a persistent string-keyed store."""

	def get(self, key):
		raise NotImplementedError

	def set(self, key, value):
		raise NotImplementedError

	def remove(self, key):
		raise NotImplementedError


class MemoryStorage(StorageAdapter):
	"""Process-local store. Setting `fail_writes` simulates a full or disabled store."""

	def __init__(self, initial=None):
		self._items = dict(initial or {})
		self.fail_writes = False

	def get(self, key):
		return self._items.get(key)

	def set(self, key, value):
		if self.fail_writes:
			raise StorageUnavailable(key, "writes disabled")
		self._items[key] = value

	def remove(self, key):
		if self.fail_writes:
			raise StorageUnavailable(key, "writes disabled")
		self._items.pop(key, None)

	def keys(self):
		return list(self._items)


class SqliteStorage(StorageAdapter):
	"""Single-table key/value store in the per-user study.db."""

	def __init__(self, path=None):
		self.path = Path(path) if path is not None else db_path()

	def connect(self):
		"""Open SQLite connection and ensure schema is applied."""
		conn = sqlite3.connect(self.path)
		conn.row_factory = sqlite3.Row
		with open(SCHEMA_PATH, encoding="utf-8") as f:
			conn.executescript(f.read())
		return conn

	def get(self, key):
		try:
			conn = self.connect()
			try:
				row = conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
			finally:
				conn.close()
		except sqlite3.Error as exc:
			logger.warning(f"Read of {key!r} failed, treating as absent: {exc}")
			return None
		return row["value"] if row else None

	def set(self, key, value):
		try:
			conn = self.connect()
			try:
				with conn:
					conn.execute(
						"""
						INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
						ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
						""",
						(key, value, utc_now_iso())
					)
			finally:
				conn.close()
		except sqlite3.Error as exc:
			raise StorageUnavailable(key, exc) from exc

	def remove(self, key):
		try:
			conn = self.connect()
			try:
				with conn:
					conn.execute("DELETE FROM kv WHERE key=?", (key,))
			finally:
				conn.close()
		except sqlite3.Error as exc:
			raise StorageUnavailable(key, exc) from exc
