"""PayPal batch payouts over the REST API."""
import logging
import time
from typing import Optional

import httpx

from voxelhub.domain.common.errors import PaymentProviderError
from voxelhub.domain.common.types import format_money
from voxelhub.domain.settlement.models import Payout, PayoutDestination, PayoutStatus, PayPalDestination
from voxelhub.infra.payments.base import PAYPAL_BATCH_STATUS_MAP, ProviderResult

logger = logging.getLogger(__name__)


class PayPalPayoutProvider:
    """OAuth2 client-credentials token, then one batch payout per maker payout."""

    name = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not client_id or not client_secret:
            raise ValueError("paypal_client_id and paypal_client_secret are required for live PayPal payouts")
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            raise PaymentProviderError(self.name, f"token request failed: HTTP {response.status_code}")
        token = response.json().get("access_token")
        if not token:
            raise PaymentProviderError(self.name, "token response missing access_token")
        return token

    async def submit(self, payout: Payout, destination: PayoutDestination) -> ProviderResult:
        receiver = destination.receiver if isinstance(destination, PayPalDestination) else None
        if not receiver:
            raise PaymentProviderError(self.name, "no PayPal receiver configured")

        body = {
            "sender_batch_header": {
                "sender_batch_id": f"payout_{int(time.time() * 1000)}",
                "email_subject": "VoxelHub Payout",
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": format_money(payout.amount), "currency": payout.currency.upper()},
                    "receiver": receiver,
                    "note": "VoxelHub Marketplace Earnings",
                    "sender_item_id": payout.id,
                }
            ],
        }
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                response = await client.post(
                    "/v1/payments/payouts",
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(self.name, f"request failed: {e}") from e

        data = response.json() if response.content else {}
        batch_id = (data.get("batch_header") or {}).get("payout_batch_id")
        if response.status_code >= 400 or not batch_id:
            logger.warning("PayPal payout for %s rejected: HTTP %s %s", payout.id, response.status_code, data)
            return ProviderResult(
                status=PayoutStatus.FAILED,
                response=data,
                error=data.get("message") or f"HTTP {response.status_code}",
            )
        logger.info("PayPal batch %s created for payout %s", batch_id, payout.id)
        return ProviderResult(status=PayoutStatus.PROCESSING, reference=batch_id, response=data)

    async def fetch_status(self, reference: str, destination: Optional[PayoutDestination]) -> Optional[PayoutStatus]:
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                response = await client.get(
                    f"/v1/payments/payouts/{reference}",
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(self.name, f"request failed: {e}") from e
        if response.status_code != 200:
            raise PaymentProviderError(self.name, f"status lookup failed: HTTP {response.status_code}")
        batch_status = (response.json().get("batch_header") or {}).get("batch_status", "")
        return PAYPAL_BATCH_STATUS_MAP.get(batch_status.upper())
