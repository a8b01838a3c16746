"""
AI-backed emission estimate for a free-text activity description.

The gateway speaks the chat-completions format and is asked to answer with a
bare {"carbon_amount": <kg CO2e>} object. Failures raise EstimatorUnavailable
and never touch stored data; callers fall back to picking a category by hand.
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

import config
from errors import EstimatorUnavailable, ValidationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a carbon footprint calculation expert. Given an activity description, \
calculate the estimated CO2 equivalent emissions in kilograms.

Common emission factors:
- Gasoline car: 0.411 kg CO2e per mile
- Electric car: 0.2 kg CO2e per mile
- Domestic flight: 0.255 kg CO2e per mile
- Electricity (US avg): 0.92 kg CO2e per kWh
- Natural gas: 5.3 kg CO2e per therm
- Beef: 27 kg CO2e per kg
- Dairy: 3.2 kg CO2e per kg
- Recycling (negative): -0.85 kg CO2e per kg

Return ONLY a JSON object with a single "carbon_amount" field containing the numeric value in kg CO2e. \
No explanations, just the JSON.
Example: {"carbon_amount": 10.25}"""


class EmissionEstimator:
    def __init__(self, api_key: Optional[str] = None, url: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, client: Optional[httpx.Client] = None):
        self.api_key = api_key if api_key is not None else config.ESTIMATOR_API_KEY
        self.url = url or config.ESTIMATOR_URL
        self.model = model or config.ESTIMATOR_MODEL
        self.client = client or httpx.Client(timeout=timeout or config.ESTIMATOR_TIMEOUT)

    def estimate(self, description: str) -> Decimal:
        if not self.api_key:
            raise EstimatorUnavailable("Emission estimator is not configured", reason="not_configured")
        try:
            response = self.client.post(
                self.url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": description},
                    ],
                },
            )
        except httpx.HTTPError as exc:
            logger.error("Estimator request failed: %s", exc)
            raise EstimatorUnavailable(f"Estimator request failed: {exc}") from exc

        if response.status_code == 429:
            raise EstimatorUnavailable("Rate limits exceeded, please try again later.",
                                       reason="rate_limited", upstream_status=429)
        if response.status_code == 402:
            raise EstimatorUnavailable("Payment required, please add funds to the AI workspace.",
                                       reason="payment_required", upstream_status=402)
        if response.is_error:
            raise EstimatorUnavailable(f"AI gateway error: {response.status_code}",
                                       upstream_status=response.status_code)

        content = None
        try:
            content = response.json()["choices"][0]["message"]["content"]
            return Decimal(str(json.loads(content)["carbon_amount"]))
        except (ValueError, KeyError, IndexError, TypeError, InvalidOperation) as exc:
            logger.error("Error parsing AI response: %r", content)
            raise EstimatorUnavailable("Invalid AI response format") from exc


def equivalent_quantity(carbon_amount: Decimal, emission_factor: Decimal) -> Decimal:
    """Quantity of a category that would produce carbon_amount."""
    if not emission_factor:
        raise ValidationError("Category has no emission factor")
    return (carbon_amount / emission_factor).quantize(Decimal("0.01"))
