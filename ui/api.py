import os
import time
from typing import Callable, List, Optional

import requests

BASE_URL = os.getenv("CREW_API_URL", "http://localhost:8000")
USER_ID = os.getenv("CREW_USER_ID", "demo-user")
POLL_INTERVAL = 2.0

TERMINAL_STATUSES = {"completed", "error", "stopped"}


def _headers(user_id: Optional[str] = None) -> dict:
    return {"X-User-Id": user_id or USER_ID}


def check_backend() -> bool:
    """Checks if the backend is reachable."""
    try:
        resp = requests.get(f"{BASE_URL}/", timeout=5)
        return resp.status_code == 200
    except requests.exceptions.RequestException:
        return False


def submit_task(goal_text: str, user_id: Optional[str] = None) -> Optional[dict]:
    """Submits a goal and returns the created task, or None on failure."""
    try:
        resp = requests.post(f"{BASE_URL}/tasks", json={"goal_text": goal_text}, headers=_headers(user_id), timeout=10)
        resp.raise_for_status()
        return resp.json()
    except requests.exceptions.RequestException:
        return None


def get_task(task_id: str, user_id: Optional[str] = None) -> Optional[dict]:
    try:
        resp = requests.get(f"{BASE_URL}/tasks/{task_id}", headers=_headers(user_id), timeout=10)
        resp.raise_for_status()
        return resp.json()
    except requests.exceptions.RequestException:
        return None


def list_tasks(user_id: Optional[str] = None) -> List[dict]:
    try:
        resp = requests.get(f"{BASE_URL}/tasks", headers=_headers(user_id), timeout=10)
        resp.raise_for_status()
        return resp.json()
    except requests.exceptions.RequestException:
        return []


def stop_task(task_id: str, user_id: Optional[str] = None) -> bool:
    try:
        resp = requests.post(f"{BASE_URL}/tasks/{task_id}/stop", headers=_headers(user_id), timeout=10)
        resp.raise_for_status()
        return bool(resp.json().get("success"))
    except requests.exceptions.RequestException:
        return False


def wait_for_task(
    task_id: str,
    interval: float = POLL_INTERVAL,
    timeout: float = 600.0,
    user_id: Optional[str] = None,
    on_update: Optional[Callable[[dict], None]] = None,
) -> Optional[dict]:
    """
    Re-fetches the task every `interval` seconds until it reaches a
    terminal status or `timeout` runs out. Returns the last snapshot seen.
    """
    deadline = time.monotonic() + timeout
    task = None
    while True:
        snapshot = get_task(task_id, user_id)
        if snapshot is not None:
            task = snapshot
            if on_update:
                on_update(task)
            if task.get("status") in TERMINAL_STATUSES:
                return task
        if time.monotonic() >= deadline:
            return task
        time.sleep(interval)
