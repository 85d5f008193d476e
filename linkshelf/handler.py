"""
Scheduled entrypoint for one-shot refresh batches

Event-driven alternative to the long-running scheduler: a cron or
EventBridge rule invokes `lambda_handler` and exactly one batch runs.
"""

import asyncio
import logging
from typing import Dict, Any, Optional

from linkshelf.config.settings import settings
from linkshelf.jobs.refresh_scheduler import RefreshScheduler, build_refresh_scheduler

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_refresh_once(scheduler: Optional[RefreshScheduler] = None) -> Dict[str, Any]:
    """Run a single refresh batch and release the scheduler's HTTP clients"""
    job_scheduler = scheduler or build_refresh_scheduler()
    try:
        return await job_scheduler.run_batch()
    finally:
        await job_scheduler.enricher.aclose()


def lambda_handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """
    Entrypoint for scheduled refresh runs.

    Expected event payloads:
    - {"source": "refresh_stale"}

    Default is "refresh_stale" if no source is provided.

    Returns:
        Dictionary with statusCode, source, and result
    """
    source = (event or {}).get("source", "refresh_stale")
    logger.info(f"Handler invoked with source: {source}")

    try:
        if source == "refresh_stale":
            result = asyncio.run(run_refresh_once())
        else:
            error_msg = f"Unknown source: {source}"
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info(f"Refresh completed: {result}")

        return {
            "statusCode": 200,
            "source": source,
            "result": result,
        }

    except Exception as e:
        logger.error(f"Handler execution failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "source": source,
            "error": str(e),
        }


# Allow local runs via `python -m linkshelf.handler`
if __name__ == "__main__":
    print(lambda_handler({"source": "refresh_stale"}, None))
