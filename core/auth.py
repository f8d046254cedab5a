import logging
import secrets
from typing import Optional

from fastapi import HTTPException

logger = logging.getLogger(__name__)


def verify_scheduler_key(expected: str, header_key: Optional[str], body_key: Optional[str] = None) -> None:
    """
    Guard for cron-triggered endpoints. The key may come from the X-Scheduler-Key
    header or from a schedulerKey field in the JSON body.
    """
    provided = header_key or body_key
    if not provided or not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Scheduler trigger rejected: %s key", "missing" if not provided else "invalid")
        raise HTTPException(status_code=401, detail="Unauthorized")
