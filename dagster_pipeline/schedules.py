from dagster import define_asset_job, schedule, DefaultScheduleStatus

from quote_cache.warmup import read_tracked_symbols

from . import assets


def _run_config(symbols):
    return {
        "ops": {
            "tracked_quotes": {
                "config": {
                    "symbols": symbols,
                }
            }
        }
    }


# Asset job with a default config sourced from the current tracklist
tracked_quotes_job = define_asset_job(
    name="tracked_quotes_job",
    selection=[assets.tracked_quotes],
    config=_run_config(read_tracked_symbols()),
)


# Every 15 minutes through the regular US session, Monday-Friday
@schedule(
    cron_schedule="*/15 9-16 * * 1-5",
    execution_timezone="America/New_York",
    job=tracked_quotes_job,
    default_status=DefaultScheduleStatus.RUNNING,
)
def market_hours_schedule(context):
    symbols = read_tracked_symbols()
    if not symbols:
        context.log.warning("tracklist has no symbols; running with empty list")
    return _run_config(symbols)
