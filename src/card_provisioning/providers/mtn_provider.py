"""
MTN Mobile Money payment provider.

Talks to the MTN MoMo Collections API:

    POST /collection/token/                      -> OAuth access token
    POST /collection/v1_0/requesttopay           -> start a collection (202)
    GET  /collection/v1_0/requesttopay/{ref}     -> PENDING / SUCCESSFUL / FAILED

See https://momodeveloper.mtn.com/api-documentation/api-description
"""

import re
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import structlog

from card_provisioning.models.exceptions import (
    ProviderRejected,
    ProviderUnavailable,
    ValidationError,
)
from card_provisioning.models.funding import (
    FundingAttempt,
    InitiationResult,
    Provider,
    ProviderStatus,
    ProviderStatusResult,
)
from card_provisioning.providers.base import PaymentProvider

logger = structlog.get_logger(__name__)

# Refresh the access token this many seconds before MTN expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# MTN error statuses -> message shown to the user
_REQUEST_ERRORS = {
    400: "Invalid payment details. Please check your information.",
    401: "Authentication failed. Please try again.",
    409: "Duplicate transaction. Please use a different reference.",
}


def mask_phone(phone: str) -> str:
    return phone[:6] + "..."


class MtnMomoProvider(PaymentProvider):
    """MTN Mobile Money Collections API client."""

    provider = Provider.MTN

    def __init__(
        self,
        base_url: str,
        subscription_key: str,
        api_user_id: str,
        api_key: str,
        target_environment: str = "sandbox",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the MTN provider.

        Args:
            base_url: Collections API base URL
            subscription_key: Ocp-Apim-Subscription-Key for the collection product
            api_user_id: API user id (basic auth username)
            api_key: API key (basic auth password)
            target_environment: X-Target-Environment header value
            timeout_seconds: Request timeout in seconds
            http_client: Optional pre-built client (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.subscription_key = subscription_key
        self.api_user_id = api_user_id
        self.api_key = api_key
        self.target_environment = target_environment
        self.timeout_seconds = timeout_seconds
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

        self._access_token: str | None = None
        self._token_expires_at = 0.0

        logger.info(
            "mtn_provider_initialized",
            base_url=self.base_url,
            target_environment=target_environment,
            timeout_seconds=timeout_seconds,
        )

    async def close(self) -> None:
        """Close the HTTP client connection pool."""
        await self.http_client.aclose()

    async def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        try:
            response = await self.http_client.post(
                f"{self.base_url}/collection/token/",
                auth=(self.api_user_id, self.api_key),
                headers={"Ocp-Apim-Subscription-Key": self.subscription_key},
            )
        except httpx.TimeoutException as e:
            logger.error("mtn_auth_timeout", error=str(e))
            raise ProviderUnavailable("MTN authentication timeout") from e
        except httpx.RequestError as e:
            logger.error("mtn_auth_request_error", error=str(e))
            raise ProviderUnavailable(f"MTN authentication request error: {e}") from e

        if response.status_code >= 500:
            raise ProviderUnavailable(
                f"MTN service unavailable (status: {response.status_code})"
            )
        if response.status_code != 200:
            logger.error("mtn_auth_failed", status_code=response.status_code)
            raise ProviderRejected("Failed to authenticate with MTN API")

        payload = response.json()
        self._access_token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
        self._token_expires_at = (
            time.monotonic() + expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
        )

        logger.info("mtn_access_token_obtained", expires_in=expires_in)
        return self._access_token

    async def _headers(self, **extra: str) -> dict[str, str]:
        token = await self._get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Ocp-Apim-Subscription-Key": self.subscription_key,
            "X-Target-Environment": self.target_environment,
            "Content-Type": "application/json",
        }
        headers.update(extra)
        return headers

    async def initiate(self, attempt: FundingAttempt) -> InitiationResult:
        """
        Create a requestToPay transaction.

        Raises:
            ValidationError: If the payer phone number is missing or malformed
            ProviderRejected: For 4xx responses
            ProviderUnavailable: For 5xx responses, timeouts and network errors
        """
        phone = re.sub(r"\D", "", attempt.phone_or_address or "")
        if len(phone) < 10:
            raise ValidationError("Invalid phone number format")

        reference = str(uuid.uuid4())
        external_id = attempt.external_id or attempt.reference
        body = {
            "amount": str(attempt.amount),
            "currency": attempt.currency,
            "externalId": external_id,
            "payer": {"partyIdType": "MSISDN", "partyId": phone},
            "payerMessage": f"Payment for virtual card funding - {external_id}",
            "payeeNote": f"Virtual card payment - {external_id}",
        }

        logger.info(
            "mtn_request_to_pay",
            reference=reference,
            external_id=external_id,
            amount=attempt.display_amount,
            payer=mask_phone(phone),
        )

        try:
            response = await self.http_client.post(
                f"{self.base_url}/collection/v1_0/requesttopay",
                headers=await self._headers(**{"X-Reference-Id": reference}),
                json=body,
            )
        except httpx.TimeoutException as e:
            logger.error("mtn_request_to_pay_timeout", reference=reference, error=str(e))
            raise ProviderUnavailable("MTN request timeout") from e
        except httpx.RequestError as e:
            logger.error("mtn_request_to_pay_error", reference=reference, error=str(e))
            raise ProviderUnavailable(f"MTN request error: {e}") from e

        if response.status_code >= 500:
            logger.error(
                "mtn_service_error",
                reference=reference,
                status_code=response.status_code,
            )
            raise ProviderUnavailable(
                "MTN service temporarily unavailable. Please try again later."
            )
        if response.status_code not in (200, 201, 202):
            message = _REQUEST_ERRORS.get(response.status_code, "Payment request failed")
            logger.warning(
                "mtn_request_to_pay_rejected",
                reference=reference,
                status_code=response.status_code,
            )
            raise ProviderRejected(message)

        return InitiationResult(
            reference=reference,
            provider=self.provider,
            status=ProviderStatus.PENDING,
            external_id=external_id,
        )

    async def check_status(
        self,
        reference: str,
        external_id: str | None = None,
    ) -> ProviderStatusResult:
        """
        Fetch the status of a requestToPay transaction.

        Raises:
            ProviderUnavailable: For 5xx responses, timeouts and network errors
        """
        if not _UUID_RE.match(reference):
            return ProviderStatusResult(
                status=ProviderStatus.FAILED,
                reference=reference,
                reason="Invalid reference ID format. Must be a valid UUID.",
            )

        try:
            response = await self.http_client.get(
                f"{self.base_url}/collection/v1_0/requesttopay/{reference}",
                headers=await self._headers(),
            )
        except httpx.TimeoutException as e:
            logger.error("mtn_status_timeout", reference=reference, error=str(e))
            raise ProviderUnavailable("MTN status check timeout") from e
        except httpx.RequestError as e:
            logger.error("mtn_status_request_error", reference=reference, error=str(e))
            raise ProviderUnavailable(f"MTN status check error: {e}") from e

        if response.status_code >= 500:
            raise ProviderUnavailable(
                "MTN service temporarily unavailable. Please try again later."
            )
        if response.status_code == 404:
            return ProviderStatusResult(
                status=ProviderStatus.FAILED,
                reference=reference,
                reason="Payment not found. Please check the reference ID.",
            )
        if response.status_code != 200:
            return ProviderStatusResult(
                status=ProviderStatus.FAILED,
                reference=reference,
                reason=_REQUEST_ERRORS.get(response.status_code, "Status check failed"),
            )

        return self._parse_status(reference, response.json())

    def _parse_status(self, reference: str, payload: dict[str, Any]) -> ProviderStatusResult:
        try:
            status = ProviderStatus(str(payload.get("status", "")).upper())
        except ValueError:
            # Anything MTN adds later keeps the attempt polling
            status = ProviderStatus.PENDING

        reason = payload.get("reason")
        if isinstance(reason, dict):
            reason = reason.get("message") or reason.get("code")
        if status is ProviderStatus.FAILED and not reason:
            reason = "Payment failed or was rejected"
        if status is ProviderStatus.PENDING and not reason:
            reason = "Payment is still pending"

        amount = None
        if payload.get("amount") is not None:
            try:
                amount = Decimal(str(payload["amount"]))
            except InvalidOperation:
                amount = None

        logger.info(
            "mtn_status_checked",
            reference=reference,
            status=status.value,
            financial_transaction_id=payload.get("financialTransactionId"),
        )

        return ProviderStatusResult(
            status=status,
            reference=reference,
            transaction_id=reference if status is ProviderStatus.SUCCESSFUL else None,
            financial_transaction_id=payload.get("financialTransactionId"),
            amount=amount,
            currency=payload.get("currency"),
            reason=reason if status is not ProviderStatus.SUCCESSFUL else None,
            metadata={"externalId": payload.get("externalId")},
        )
