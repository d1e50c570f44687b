from dagster import Definitions, load_assets_from_modules

from . import assets
from .schedules import market_hours_schedule, tracked_quotes_job
from .sensors import tracklist_change_sensor

all_assets = load_assets_from_modules([assets])

defs = Definitions(
    assets=all_assets,
    jobs=[tracked_quotes_job],
    schedules=[market_hours_schedule],
    sensors=[tracklist_change_sensor],
)
