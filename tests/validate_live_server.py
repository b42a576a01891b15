"""
Manual end-to-end check against a running server.

    USE_FAKE_REDIS=true uvicorn agent_crew.main:app --port 8000
    python tests/validate_live_server.py
"""
import os
import time

import requests

BASE_URL = os.getenv("CREW_API_URL", "http://localhost:8000")
HEADERS = {"X-User-Id": "validator"}
TERMINAL = {"completed", "error", "stopped"}


def wait_for_server(url, timeout=10):
    start = time.time()
    while time.time() - start < timeout:
        try:
            requests.get(url)
            return True
        except requests.exceptions.ConnectionError:
            time.sleep(0.5)
    return False


def run_full_lifecycle():
    print("🧪 Starting End-to-End Validation...")

    if not wait_for_server(BASE_URL):
        print("❌ Server not running. Please start it with `uvicorn agent_crew.main:app`")
        return False

    # 1. Create Task
    print("1️⃣ Creating Task...")
    try:
        resp = requests.post(f"{BASE_URL}/tasks", json={"goal_text": "Explain quantum computing"}, headers=HEADERS)
        resp.raise_for_status()
        task_id = resp.json()["id"]
        print(f"   ✅ Task Created: {task_id}")
    except requests.exceptions.RequestException as e:
        print(f"   ❌ Task Creation Failed: {e}")
        return False

    # 2. Poll until terminal
    print(f"2️⃣ Polling Task {task_id}...")
    task = None
    deadline = time.time() + 300
    while time.time() < deadline:
        task = requests.get(f"{BASE_URL}/tasks/{task_id}", headers=HEADERS).json()
        steps = ", ".join(f"{s['step_number']}:{s['status']}" for s in task["subtasks"])
        print(f"   📥 {task['status']} [{steps}]")
        if task["status"] in TERMINAL:
            break
        time.sleep(2)

    # 3. Validation Logic
    print("\n🧐 Validating Result...")
    ok = True
    if task and task["status"] == "completed" and task["final_output"]:
        print("   ✅ Task completed with a final output")
    else:
        print(f"   ❌ Task ended as {task and task['status']}: {task and task['error_message']}")
        ok = False

    events = requests.get(f"{BASE_URL}/tasks/{task_id}/events", headers=HEADERS).json()
    if events and events[-1]["type"] == "done":
        print(f"   ✅ Execution log closed with DONE ({len(events)} events)")
    else:
        print("   ❌ Execution log missing DONE event")
        ok = False

    print("\n🎉 Validation Complete.")
    return ok


if __name__ == "__main__":
    raise SystemExit(0 if run_full_lifecycle() else 1)
