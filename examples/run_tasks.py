"""
Example usage of the NSE data worker as a library.

Runs a few tasks against the live NSE site with in-memory cache and bus
backends, then prints what was cached and announced. Needs network access;
NSE may answer with empty bodies or 401 without a browser session.
"""

from nsedata.models import Task
from nsedata.store import SnapshotKeys
from nseworker.bootstrap import build_worker
from nseworker.config import Settings


def snapshot_example(worker):
    """All-indices CSV: fetch, rotate, notify."""
    print("=== All indices ===")

    result = worker.router.route(Task(kind="allIndices"))
    print(f"Result: {result}")

    keys = SnapshotKeys.for_base("nse:allindices")
    store = worker.publisher.store
    data = store.get(keys.current_data) or ""
    print(f"Cached at {store.get(keys.current_timestamp)}: {len(data)} chars")
    print(f"Notifications: {[n.key for n in worker.publisher.bus.published]}")


def option_chain_example(worker):
    """Next two NIFTY expiries; contract-info is fetched once per day."""
    print("\n=== Option chain ===")

    payload = {"taskType": "optionChain", "symbol": "NIFTY", "numberOfExpiry": 2, "taskdelay": 1000}
    for part in worker.router.route_payload(payload).split(" | "):
        print(part)


def batch_example(worker):
    """Sequential batch with a pause between tasks."""
    from nseworker.runner import run_batch

    print("\n=== Batch ===")

    tasks = [Task(kind="allindices"), Task(kind="equity", timeout_ms=120_000), None]
    print(run_batch(worker.router, tasks, inter_task_delay_ms=2000))


if __name__ == "__main__":
    settings = Settings(_env_file=None, CACHE_BACKEND="inmem", BUS_BACKEND="inmem")
    with build_worker(settings) as worker:
        snapshot_example(worker)
        option_chain_example(worker)
        batch_example(worker)
