"""
Cleanup of stale completed tasks.

A task is eligible once it has sat on the owner's done board with a
``completed_at`` older than the retention window (48 hours by default).
Each call is scoped to a single owner.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .database import Database
from .schema import parse_iso, to_iso, utc_now
from .store import TaskStore

logger = logging.getLogger(__name__)

RETENTION_HOURS = 48
CLEANUP_INTERVAL_HOURS = 24

_ELIGIBLE = """
    FROM tasks
    WHERE board_id = ?
      AND creator_id = ?
      AND completed_at IS NOT NULL
      AND completed_at < ?
"""


def _cutoff(retention_hours: int) -> str:
    return to_iso(utc_now() - timedelta(hours=retention_hours))


def _iso(value: Optional[str]) -> Optional[str]:
    dt = parse_iso(value)
    return dt.isoformat() if dt else None


def cleanup_old_done_tasks(db: Database, owner_id: str, retention_hours: int = RETENTION_HOURS) -> Dict[str, Any]:
    """
    Delete the owner's done tasks completed before now - retention_hours.

    Returns:
        {"deletedCount": int, "deletedTasks": [{"id", "title", "completed_at"}]}

    task_tags rows go with their tasks through ON DELETE CASCADE.
    """
    store = TaskStore(db, owner_id)
    cutoff = _cutoff(retention_hours)

    with db.transaction() as conn:
        done_board_id = store.done_board_id(conn)
        params = (done_board_id, owner_id, cutoff)
        rows = conn.execute(
            "SELECT id, title, completed_at " + _ELIGIBLE + " ORDER BY completed_at ASC", params
        ).fetchall()
        if rows:
            conn.execute("DELETE " + _ELIGIBLE, params)

    deleted: List[Dict[str, Any]] = [
        {"id": r["id"], "title": r["title"], "completed_at": _iso(r["completed_at"])} for r in rows
    ]
    if deleted:
        logger.info(f"Cleanup deleted {len(deleted)} done task(s) for owner {owner_id}")
    return {"deletedCount": len(deleted), "deletedTasks": deleted}


def get_cleanup_stats(db: Database, owner_id: str, retention_hours: int = RETENTION_HOURS) -> Dict[str, Any]:
    """Read-only preview of what cleanup_old_done_tasks() would delete."""
    store = TaskStore(db, owner_id)
    params = (store.done_board_id(), owner_id, _cutoff(retention_hours))

    rows = db.query(
        "SELECT title, completed_at " + _ELIGIBLE + " ORDER BY completed_at ASC", params
    ).rows

    def _summary(row) -> Dict[str, Any]:
        return {"title": row["title"], "completed_at": _iso(row["completed_at"])}

    return {
        "tasksToDelete": len(rows),
        "oldestTask": _summary(rows[0]) if rows else None,
        "newestTask": _summary(rows[-1]) if rows else None,
    }


def perform_scheduled_cleanup(db: Database, owner_id: str, retention_hours: int = RETENTION_HOURS) -> Dict[str, Any]:
    """
    Entry point for the scheduler. Never raises: failures are reported
    as ``success: False`` with the error message.
    """
    logger.info("Starting scheduled cleanup of old done tasks...")
    timestamp = utc_now().isoformat()
    try:
        result = cleanup_old_done_tasks(db, owner_id, retention_hours)
    except Exception as e:
        logger.error(f"Scheduled cleanup failed: {e}")
        return {
            "success": False,
            "deletedCount": 0,
            "deletedTasks": [],
            "timestamp": timestamp,
            "error": str(e),
        }
    logger.info(f"Cleanup completed: {result['deletedCount']} tasks deleted")
    return {
        "success": True,
        "deletedCount": result["deletedCount"],
        "deletedTasks": result["deletedTasks"],
        "timestamp": timestamp,
    }


def cleanup_monitoring_stats(retention_hours: int = RETENTION_HOURS) -> Dict[str, Any]:
    """Describe the cleanup schedule for monitoring."""
    now = utc_now()
    return {
        "lastCleanup": now.isoformat(),
        "nextScheduledCleanup": (now + timedelta(hours=CLEANUP_INTERVAL_HOURS)).isoformat(),
        "cleanupInterval": f"{CLEANUP_INTERVAL_HOURS} hours",
        "retentionPeriod": f"{retention_hours} hours",
    }
