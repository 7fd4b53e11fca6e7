"""
Reset the active profile's study data.
Sessions, tasks, subjects and the timer go back to an empty state; the
profile itself and any other profiles are kept.
"""

from StudyBackEnd.core.errors import StorageUnavailable
from StudyBackEnd.core.paths import db_path
from StudyBackEnd.repos.storage import SqliteStorage
from StudyBackEnd.services.app_store import AppStore

def reset_active_profile(store=None, ask=input):
    """Clear the active profile after confirmation. Returns True when reset."""
    if store is None:
        if not db_path().exists():
            print("No database found. Stats are already at 0.")
            return False
        store = AppStore(SqliteStorage())

    profile = store.active_profile()
    if profile is None:
        print("No active profile. Nothing to reset.")
        return False

    sessions = len(store.data.sessions)
    print(f"Active profile: {profile.name} ({sessions} sessions)")
    confirm = ask("Are you sure you want to reset this profile's stats? This cannot be undone. (yes/no): ")
    if confirm.strip().lower() not in ['yes', 'y']:
        print("Reset cancelled.")
        return False

    try:
        store.reset_current_profile_data()
    except StorageUnavailable as e:
        print(f"✗ Error resetting profile: {e}")
        return False
    print("✓ All stats for this profile have been reset to 0")
    return True

if __name__ == "__main__":
    print("=" * 50)
    print("Study Dashboard - Reset Profile Stats")
    print("=" * 50)
    reset_active_profile()
    print("\nPress Enter to exit...")
    input()
