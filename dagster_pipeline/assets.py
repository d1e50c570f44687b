from dagster import asset, Field, String
import logging

from quote_cache.warmup import refresh_tracked_quotes


@asset(
    config_schema={
        "symbols": Field(
            [String],
            description="List of stock symbols to keep warm in the quote cache.",
            default_value=[],
        )
    }
)
def tracked_quotes(context):
    """
    Resolve the tracked symbols through the quote cache.

    Fresh entries are left alone, stale ones are served and queued for the
    refresh worker, missing ones are fetched now. Symbols that cannot be
    resolved are queued so the worker retries them under the rate limiter.
    Returns a mapping of symbol -> quote (or None when unavailable).
    """
    # Ensure our library logs are visible in Dagster
    logging.getLogger("quote_cache").setLevel(logging.DEBUG)
    logging.getLogger("quote_cache.resolver").setLevel(logging.DEBUG)
    logging.getLogger("quote_cache.warmup").setLevel(logging.DEBUG)

    symbols = context.op_config["symbols"]
    context.log.info(f"Starting quote warm-up for symbols: {symbols}")

    if not symbols:
        context.log.warning("No symbols provided in the configuration. Skipping run.")
        return {}

    try:
        results = refresh_tracked_quotes(symbols)
    except Exception as e:
        context.log.error(f"Error during quote warm-up asset execution: {e}")
        raise

    success = {k: v for k, v in results.items() if v}
    failed = [k for k, v in results.items() if not v]
    context.add_output_metadata({
        "success_count": len(success),
        "failed": failed,
    })
    context.log.info(f"Succeeded: {set(success.keys())}, Failed: {set(failed)}")
    return results
