"""Error taxonomy for the persistence and timer layers."""


class StudyTrackerError(Exception):
	"""Base class for all tracker errors."""


class StorageUnavailable(StudyTrackerError):
	"""The backing store rejected a write (quota, disabled, locked)."""

	def __init__(self, key, cause=None):
		self.key = key
		self.cause = cause
		super().__init__(f"storage write failed for {key!r}: {cause}")


class CorruptEnvelope(StudyTrackerError):
	"""A stored value is not JSON or does not have a usable shape."""

	def __init__(self, key, reason):
		self.key = key
		self.reason = reason
		super().__init__(f"corrupt value at {key!r}: {reason}")


class MissingMigration(StudyTrackerError):
	"""No migration step exists from a stored schema version."""

	def __init__(self, key, from_version, target_version):
		self.key = key
		self.from_version = from_version
		self.target_version = target_version
		super().__init__(
			f"no migration for {key!r} from version {from_version} to {target_version}"
		)


class InvalidTimerTransition(StudyTrackerError):
	"""A timer operation was called from a state that does not allow it."""

	def __init__(self, operation, state, detail=None):
		self.operation = operation
		self.state = state
		message = f"cannot {operation} while {state}"
		if detail:
			message = f"{message}: {detail}"
		super().__init__(message)


class ReferentialGap(StudyTrackerError):
	"""A record points at a subject, task or category that no longer exists."""

	def __init__(self, kind, ref_id):
		self.kind = kind
		self.ref_id = ref_id
		super().__init__(f"{kind} {ref_id!r} linked to this session no longer exists")
