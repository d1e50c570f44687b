from dagster import sensor, RunRequest
import hashlib
import json
import os

from quote_cache.warmup import read_tracked_symbols

from .schedules import _run_config

TRACK_FILE = os.path.join(os.path.dirname(os.path.dirname(__file__)), "quote_cache", "tracklist.py")


# Triggers on first load and whenever the tracklist contents change.
@sensor(name="tracklist_change_sensor", minimum_interval_seconds=30, job_name="tracked_quotes_job")
def tracklist_change_sensor(context):
    state = {"last_hash": None}
    if context.cursor:
        try:
            state.update(json.loads(context.cursor))
        except ValueError:
            context.log.warning("Ignoring unreadable sensor cursor")

    try:
        with open(TRACK_FILE, "rb") as f:
            file_hash = hashlib.sha256(f.read()).hexdigest()
    except FileNotFoundError:
        context.log.warning(f"Track file not found: {TRACK_FILE}")
        return

    if file_hash == state.get("last_hash"):
        return

    state["last_hash"] = file_hash
    context.update_cursor(json.dumps(state))

    symbols = read_tracked_symbols()
    if not symbols:
        context.log.warning("Track file has no valid symbols; skipping run request")
        return

    yield RunRequest(run_key=file_hash[:16], run_config=_run_config(symbols), tags={"trigger": "tracklist_change"})
