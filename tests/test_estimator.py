import json
from decimal import Decimal

import httpx
import pytest

from errors import EstimatorUnavailable, ValidationError
from estimator import EmissionEstimator, equivalent_quantity

URL = "https://gateway.test/v1/chat/completions"


def make_estimator(handler, api_key="test-key"):
    return EmissionEstimator(api_key=api_key, url=URL, model="test-model",
                             client=httpx.Client(transport=httpx.MockTransport(handler)))


def reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def test_estimate_parses_carbon_amount():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return reply('{"carbon_amount": 10.25}')

    assert make_estimator(handler).estimate("Drove 25 miles to work") == Decimal("10.25")
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["messages"][1] == {"role": "user", "content": "Drove 25 miles to work"}


@pytest.mark.parametrize("status, reason, http_status", [
    (429, "rate_limited", 429),
    (402, "payment_required", 402),
    (500, "bad_response", 502),
])
def test_gateway_errors(status, reason, http_status):
    estimator = make_estimator(lambda request: httpx.Response(status, json={"error": "nope"}))
    with pytest.raises(EstimatorUnavailable) as excinfo:
        estimator.estimate("anything")
    assert excinfo.value.reason == reason
    assert excinfo.value.status_code == http_status
    assert excinfo.value.upstream_status == status


@pytest.mark.parametrize("content", ["not json", '{"kg": 3}', '{"carbon_amount": "lots"}'])
def test_malformed_reply(content):
    with pytest.raises(EstimatorUnavailable) as excinfo:
        make_estimator(lambda request: reply(content)).estimate("anything")
    assert excinfo.value.reason == "bad_response"
    assert excinfo.value.upstream_status is None


def test_transport_failure():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(EstimatorUnavailable):
        make_estimator(handler).estimate("anything")


def test_missing_api_key():
    def handler(request):
        raise AssertionError("should not be called")

    with pytest.raises(EstimatorUnavailable) as excinfo:
        make_estimator(handler, api_key="").estimate("anything")
    assert excinfo.value.reason == "not_configured"


def test_equivalent_quantity():
    assert equivalent_quantity(Decimal("10.275"), Decimal("0.411")) == Decimal("25.00")
    with pytest.raises(ValidationError):
        equivalent_quantity(Decimal("1"), Decimal("0"))
