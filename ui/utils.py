from datetime import datetime

def format_timestamp(ts: str = None) -> str:
    """Returns HH:MM:SS for an ISO timestamp, or for now when missing."""
    if not ts:
        return datetime.now().strftime("%H:%M:%S")
    try:
        return datetime.fromisoformat(ts.replace("Z", "+00:00")).strftime("%H:%M:%S")
    except ValueError:
        return ts

def status_color(status: str) -> str:
    """
    Returns color for status badges.
    """
    if status in ("processing", "planning", "executing"):
        return "blue"
    if status == "completed":
        return "green"
    if status == "error":
        return "red"
    if status == "stopped":
        return "orange"
    return "grey"

def status_icon(status: str) -> str:
    return {
        "pending": "⏳",
        "processing": "🔄",
        "completed": "✅",
        "error": "❌",
        "stopped": "⏹️",
    }.get(status, "•")

def progress(task: dict) -> float:
    """Fraction of subtasks that reached a terminal status."""
    subtasks = task.get("subtasks") or []
    if not subtasks:
        return 0.0
    done = sum(1 for s in subtasks if s.get("status") in ("completed", "error", "stopped"))
    return done / len(subtasks)

def result_message(task: dict) -> tuple:
    """(kind, text) for the result panel; kind is success, warning, error or running."""
    status = task.get("status")
    if status == "completed":
        return "success", task.get("final_output") or ""
    if status == "stopped":
        return "warning", task.get("final_output") or "Task was stopped."
    if status == "error":
        return "error", task.get("error_message") or "Task failed."
    return "running", ""
