# ================================================================
# services/billing_service.py - GoCardless client (redirect flows,
# subscriptions, mandates)
# ================================================================
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import httpx
from fastapi import Request

from core.exceptions import BillingProviderError

logger = logging.getLogger(__name__)

API_VERSION = "2015-07-06"

API_BASE = {
    "live": "https://api.gocardless.com",
    "sandbox": "https://api-sandbox.gocardless.com",
}


@dataclass
class RedirectFlow:
    id: str
    redirect_url: Optional[str] = None
    mandate_id: Optional[str] = None
    customer_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "RedirectFlow":
        links = data.get("links") or {}
        return cls(
            id=data["id"],
            redirect_url=data.get("redirect_url"),
            mandate_id=links.get("mandate"),
            customer_id=links.get("customer"),
        )


@dataclass
class ProviderSubscription:
    id: str
    status: str
    mandate_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ProviderSubscription":
        return cls(
            id=data["id"],
            status=data.get("status", ""),
            mandate_id=(data.get("links") or {}).get("mandate"),
        )


class GoCardlessClient:
    """
    Thin synchronous client for the GoCardless API.
    Every call is a single attempt; provider errors surface as
    BillingProviderError with the provider's message when it sends one.
    """

    def __init__(
        self,
        access_token: Optional[str],
        environment: str = "sandbox",
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        self.access_token = access_token
        self.environment = "live" if (environment or "").lower() == "live" else "sandbox"
        self.base_url = API_BASE[self.environment]
        self._http = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "GoCardlessClient":
        return cls(settings.GOCARDLESS_ACCESS_TOKEN, settings.GOCARDLESS_ENVIRONMENT)

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------
    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        if not self.access_token:
            raise BillingProviderError("GOCARDLESS_ACCESS_TOKEN is not configured")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "GoCardless-Version": API_VERSION,
        }

        try:
            response = self._http.request(method, f"{self.base_url}{path}", json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error("❌ GoCardless %s %s failed: %s", method, path, e)
            raise BillingProviderError(f"GoCardless request failed: {e}") from e

        if response.status_code == 204:
            return None

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            error = payload.get("error") if isinstance(payload, dict) else None
            if isinstance(error, dict):
                message = error.get("message")
            else:
                message = error
            message = message or response.reason_phrase or "GoCardless request failed"
            logger.error("❌ GoCardless %s %s returned %s: %s", method, path, response.status_code, message)
            raise BillingProviderError(message, provider_status=response.status_code, details=payload)

        return payload

    # ------------------------------------------------------------
    # Redirect flows
    # ------------------------------------------------------------
    def create_redirect_flow(
        self,
        description: str,
        session_token: str,
        success_redirect_url: str,
        prefilled_customer: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RedirectFlow:
        body: Dict[str, Any] = {
            "description": description,
            "session_token": session_token,
            "success_redirect_url": success_redirect_url,
        }
        if prefilled_customer:
            body["prefilled_customer"] = {k: v for k, v in prefilled_customer.items() if v}
        if metadata:
            body["metadata"] = metadata

        result = self._request("POST", "/redirect_flows", {"redirect_flows": body})
        return RedirectFlow.from_payload(result["redirect_flows"])

    def complete_redirect_flow(self, flow_id: str, session_token: str) -> RedirectFlow:
        result = self._request(
            "POST",
            f"/redirect_flows/{flow_id}/actions/complete",
            {"data": {"session_token": session_token}},
        )
        return RedirectFlow.from_payload(result["redirect_flows"])

    # ------------------------------------------------------------
    # Subscriptions & mandates
    # ------------------------------------------------------------
    def create_subscription(
        self,
        mandate_id: str,
        amount: int,
        currency: str,
        name: str,
        interval_unit: str,
        interval: int = 1,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProviderSubscription:
        body: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "name": name[:255],
            "interval_unit": interval_unit,
            "interval": interval,
            "links": {"mandate": mandate_id},
        }
        if metadata:
            body["metadata"] = metadata

        result = self._request("POST", "/subscriptions", {"subscriptions": body})
        return ProviderSubscription.from_payload(result["subscriptions"])

    def cancel_subscription(self, subscription_id: str) -> None:
        self._request("POST", f"/subscriptions/{subscription_id}/actions/cancel", {"data": {}})

    def cancel_mandate(self, mandate_id: str) -> None:
        self._request("POST", f"/mandates/{mandate_id}/actions/cancel", {"data": {}})


def get_billing_client(request: Request) -> GoCardlessClient:
    return request.app.state.billing_client
