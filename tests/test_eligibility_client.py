import httpx
import pytest

from services.eligibility_client import EligibilityClient, EligibilityError

URL = "http://eligibility.test/api/schedules/booking-eligibility"


def client_for(handler):
    return EligibilityClient(URL, timeout=2, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_check_parses_answer_and_sends_ids():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json={
            "can_book": False,
            "reason": "Transport fee pending",
            "payment_required": True,
            "payment_options": [{"type": "monthly", "amount": 800}],
        })

    result = await client_for(handler).check("s-1", "sch-1")

    assert seen == {"studentId": "s-1", "scheduleId": "sch-1"}
    assert result.can_book is False
    assert result.payment_required is True
    assert result.reason == "Transport fee pending"
    assert result.payment_options == [{"type": "monthly", "amount": 800}]


@pytest.mark.asyncio
async def test_missing_fields_default_to_not_bookable():
    result = await client_for(lambda request: httpx.Response(200, json={})).check("s-1", "sch-1")

    assert result.can_book is False
    assert result.payment_options == []


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(503, text="down"),
    httpx.Response(200, text="<html>not json</html>"),
    httpx.Response(200, json=["unexpected"]),
])
async def test_bad_answers_raise(response):
    with pytest.raises(EligibilityError):
        await client_for(lambda request: response).check("s-1", "sch-1")


@pytest.mark.asyncio
async def test_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(EligibilityError):
        await client_for(handler).check("s-1", "sch-1")
