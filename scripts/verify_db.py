import asyncio
import sys
import os

# Add project root/backend to path
sys.path.append(os.path.join(os.getcwd(), "backend"))

from app.db.session import AsyncSessionLocal, init_models
from app.services.sync_history import SyncHistory


async def verify():
    print("Starting sync history verification...")
    await init_models()

    history = SyncHistory(AsyncSessionLocal)
    run_id = await history.start("verify-ns", "verify-registry", forced=False)
    print(f"Recorded sync run {run_id}")

    await history.finish(run_id, "succeeded", server_count=3, message="Synced 3 servers")

    runs = await history.recent("verify-ns", "verify-registry", limit=1)
    if runs and runs[0].id == run_id and runs[0].status == "succeeded" and runs[0].server_count == 3:
        print("SUCCESS: Sync run persisted and read back.")
    else:
        print(f"FAILURE: unexpected ledger contents: {runs}")
        exit(1)

if __name__ == "__main__":
    asyncio.run(verify())
