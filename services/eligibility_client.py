# services/eligibility_client.py
import logging

import httpx

from models.schemas import EligibilityResult

logger = logging.getLogger(__name__)


class EligibilityError(Exception):
    """The eligibility collaborator could not be reached or answered garbage."""


class EligibilityClient:
    """
    Thin call-out to the booking-eligibility service.

    GET {base_url}?studentId=..&scheduleId=.. ->
    {can_book, reason, payment_required, payment_options}
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def check(self, student_id: str, schedule_id: str) -> EligibilityResult:
        params = {"studentId": student_id, "scheduleId": schedule_id}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.base_url, params=params)
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Eligibility lookup failed for student=%s schedule=%s: %s", student_id, schedule_id, e)
            raise EligibilityError(str(e)) from e

        if not isinstance(body, dict):
            raise EligibilityError(f"unexpected eligibility response: {body!r}")

        result = EligibilityResult(
            can_book=bool(body.get("can_book")),
            reason=body.get("reason"),
            payment_required=bool(body.get("payment_required")),
            payment_options=body.get("payment_options") or [],
        )
        logger.debug("Eligibility student=%s schedule=%s -> %s", student_id, schedule_id, result)
        return result
