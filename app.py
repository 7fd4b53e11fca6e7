import sys
from PySide6.QtCore import QCoreApplication
from StudyBackEnd.core.clock import fmt_hms
from StudyBackEnd.repos.storage import SqliteStorage
from StudyBackEnd.services.app_store import AppStore
from StudyBackEnd.services.timer_service import TimerService

def status_lines(store):
    """Plain-text summary of the active profile."""
    profile = store.active_profile()
    if profile is None:
        return ["No active profile."]
    summary = store.analytics()
    timer = store.data.timer
    lines = [
        f"Profile: {profile.name}",
        f"Timer: {store.timer_state} ({timer.mode}) {fmt_hms(store.display_elapsed() // 1000)}",
        f"Today: {fmt_hms(summary.today_ms // 1000)}  ({summary.productivity_percent:.0f}% productive)",
        f"Streak: {summary.streak_days} day(s)",
    ]
    if summary.best_day:
        lines.append(f"Best day: {summary.best_day} ({summary.best_day_minutes} min)")
    return lines

def main(argv=None):
    argv = sys.argv if argv is None else argv
    store = AppStore(SqliteStorage())
    print("\n".join(status_lines(store)))
    if "--watch" not in argv or store.timer_state != "running":
        return 0

    app = QCoreApplication(argv)
    service = TimerService(store)
    service.tick.connect(lambda ms: print(f"\r{fmt_hms(ms // 1000)}", end="", flush=True))
    service.state_changed.connect(lambda state: app.quit() if state != "running" else None)
    service.resume_active_session()
    return app.exec()

if __name__ == "__main__":
    sys.exit(main())
