"""Profile registry and per-profile UserData persistence.

The registry lives under a fixed key; each profile's data lives under its
own `study-dashboard:data:{id}` key. This module is the only place that
writes either.
"""
from StudyBackEnd.core import config
from StudyBackEnd.core.clock import ms_to_iso, now_ms
from StudyBackEnd.core.log import setup_logger
from StudyBackEnd.core.models import Profile, ProfilesState, UserData, empty_user_data, new_id
from StudyBackEnd.repos import envelope
from StudyBackEnd.repos.migrations import (
	PROFILE_MIGRATIONS, USER_DATA_MIGRATIONS, is_profiles_state, is_user_data,
)

logger = setup_logger(__name__)


class ProfileRegistry:
	def __init__(self, storage, clock=now_ms):
		self.storage = storage
		self.clock = clock
		self.state = self.load_profiles()

	# -- registry -----------------------------------------------------------

	def load_profiles(self) -> ProfilesState:
		raw = envelope.load(
			self.storage,
			config.PROFILES_KEY,
			config.PROFILES_SCHEMA_VERSION,
			lambda: ProfilesState().to_dict(),
			migrations=PROFILE_MIGRATIONS,
			validate=is_profiles_state,
		)
		state = ProfilesState.from_dict(raw)
		if state.active_profile_id is not None and state.find(state.active_profile_id) is None:
			logger.warning(f"Active profile {state.active_profile_id!r} is not registered, clearing it")
			state.active_profile_id = None
		return state

	def _draft(self) -> ProfilesState:
		return ProfilesState.from_dict(self.state.to_dict())

	def _save_profiles(self, state: ProfilesState):
		"""Write `state` and adopt it. On StorageUnavailable the old state stays."""
		envelope.save(
			self.storage,
			config.PROFILES_KEY,
			state.to_dict(),
			config.PROFILES_SCHEMA_VERSION,
			ms_to_iso(self.clock()),
		)
		self.state = state

	@property
	def profiles(self):
		return list(self.state.profiles)

	def active_profile(self):
		if self.state.active_profile_id is None:
			return None
		return self.state.find(self.state.active_profile_id)

	def create_profile(self, name):
		"""Register a profile, give it empty data and make it active.

		Returns the new Profile, or None when the name is blank.
		"""
		trimmed = name.strip() if isinstance(name, str) else ""
		if not trimmed:
			logger.warning("Refusing to create a profile with an empty name")
			return None

		at_ms = self.clock()
		now_iso = ms_to_iso(at_ms)
		profile = Profile(id=new_id(), name=trimmed, created_at=now_iso, last_active_at=now_iso)
		self.save_user_data(empty_user_data(profile.id, now_iso, at_ms))

		state = self._draft()
		state.profiles.append(profile)
		state.active_profile_id = profile.id
		self._save_profiles(state)
		logger.info(f"Created profile {profile.name!r} ({profile.id})")
		return profile

	def rename_profile(self, profile_id, name):
		trimmed = name.strip() if isinstance(name, str) else ""
		state = self._draft()
		profile = state.find(profile_id)
		if not trimmed or profile is None:
			return False
		profile.name = trimmed
		self._save_profiles(state)
		return True

	def switch_profile(self, profile_id):
		"""Make `profile_id` active. Unknown ids are ignored."""
		state = self._draft()
		profile = state.find(profile_id)
		if profile is None:
			logger.warning(f"Ignoring switch to unknown profile {profile_id!r}")
			return False
		profile.last_active_at = ms_to_iso(self.clock())
		state.active_profile_id = profile.id
		self._save_profiles(state)
		logger.info(f"Switched to profile {profile.name!r}")
		return True

	# -- per-profile data ---------------------------------------------------

	def _empty(self, profile_id):
		at_ms = self.clock()
		return empty_user_data(profile_id, ms_to_iso(at_ms), at_ms)

	def load_user_data(self, profile_id) -> UserData:
		raw = envelope.load(
			self.storage,
			config.profile_data_key(profile_id),
			config.APP_SCHEMA_VERSION,
			lambda: None,
			migrations=USER_DATA_MIGRATIONS,
			validate=is_user_data,
		)
		if raw is None:
			return self._empty(profile_id)
		try:
			data = UserData.from_dict(raw)
		except (KeyError, TypeError, AttributeError) as exc:
			logger.warning(f"Stored data for profile {profile_id!r} is unusable ({exc}), using empty data")
			return self._empty(profile_id)
		data.profile_id = profile_id
		return data

	def save_user_data(self, data: UserData):
		"""The single write path for profile data. StorageUnavailable propagates."""
		envelope.save(
			self.storage,
			config.profile_data_key(data.profile_id),
			data.to_dict(),
			config.APP_SCHEMA_VERSION,
			data.updated_at,
		)

	def reset_user_data(self, profile_id) -> UserData:
		data = self._empty(profile_id)
		self.save_user_data(data)
		logger.info(f"Reset data for profile {profile_id!r}")
		return data
