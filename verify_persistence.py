import asyncio
import time
import subprocess
import httpx
import sys
import os
import signal

from backend.seed_users import seed_users, dev_token

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"

def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        except Exception as e:
            print(f"Connect error: {e}")
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False

def start_server(echo=False):
    env = {**os.environ, "DB_ECHO": "True"} if echo else None
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env
    )

def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()

def run_verification():
    # 1. Seed directory entries and build tokens
    print("\n--- [Step 1] Seeding Users ---")
    users = asyncio.run(seed_users())
    admin = {"Authorization": f"Bearer {dev_token(users['admin-shop-1'])}"}
    rider = {"Authorization": f"Bearer {dev_token(users['rider-ravi'])}"}

    # 2. Start Server (First Run)
    print("\n--- [Step 2] Starting Server (Initial) ---")
    proc = start_server(echo=True)

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 3. Create shipment, accept and double pickup
        print("\n--- [Step 3] Creating Shipment and Double Pickup ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/shipments", headers=admin, json={
            "pickup_address": "12 MG Road, Shop 4",
            "customer_name": "Persistence Check",
            "customer_address": "221 Lake View, Flat 3B",
        })
        if resp.status_code != 201:
            print(f"❌ Shipment creation failed: {resp.status_code} {resp.text}")
            raise Exception("Shipment creation failed")
        shipment_id = resp.json()["id"]
        print(f"✅ Shipment {shipment_id} created")

        httpx.post(f"{BASE_URL}{API_PREFIX}/shipments/{shipment_id}/accept", headers=rider)
        first = httpx.post(f"{BASE_URL}{API_PREFIX}/shipments/{shipment_id}/pickup", headers=rider).json()
        second = httpx.post(f"{BASE_URL}{API_PREFIX}/shipments/{shipment_id}/pickup", headers=rider).json()
        if first["applied"] and not second["applied"]:
            print(f"✅ Duplicate pickup suppressed ({second['reason']})")
        else:
            print(f"❌ Unexpected pickup results: {first} / {second}")
            raise Exception("Duplicate pickup was applied")

    finally:
        print("\n--- [Step 4] Stopping Server ---")
        stop_server(proc)

    time.sleep(2) # Wait for port release

    # 4. Restart Server
    print("\n--- [Step 5] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        # 5. History and ledger survived the restart
        print("\n--- [Step 6] Verifying History and Ledger ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/shipments/{shipment_id}", headers=admin)
        statuses = [h["status"] for h in resp.json()["history"]]
        if statuses == ["created", "assigned", "picked_up"]:
            print("✅ Status history persisted")
        else:
            print(f"❌ Unexpected history: {statuses}")
            raise Exception("History lost after restart")

        # 6. A retry after restart is still a no-op
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/shipments/{shipment_id}/pickup", headers=rider)
        if resp.json()["applied"]:
            raise Exception("Pickup re-applied after restart")
        print("✅ Pickup retry after restart is a no-op")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/shipments/{shipment_id}/notifications", headers=admin)
        print(f"✅ Ledger holds {len(resp.json())} notification record(s)")

    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)

if __name__ == "__main__":
    run_verification()
