"""
Crypto payment provider.

Verifies an on-chain transfer by its transaction hash over Ethereum JSON-RPC:
no receipt yet is PENDING, a reverted receipt is FAILED, and a successful
receipt with enough confirmations is SUCCESSFUL.
"""

import itertools
import re
from typing import Any

import httpx
import structlog

from card_provisioning.models.exceptions import ProviderUnavailable
from card_provisioning.models.funding import (
    FundingAttempt,
    InitiationResult,
    Provider,
    ProviderStatus,
    ProviderStatusResult,
)
from card_provisioning.providers.base import PaymentProvider

logger = structlog.get_logger(__name__)

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class CryptoProvider(PaymentProvider):
    """JSON-RPC receipt checker for crypto funding."""

    provider = Provider.CRYPTO

    def __init__(
        self,
        rpc_url: str,
        required_confirmations: int = 6,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.rpc_url = rpc_url
        self.required_confirmations = required_confirmations
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._request_ids = itertools.count(1)

        logger.info(
            "crypto_provider_initialized",
            required_confirmations=required_confirmations,
            timeout_seconds=timeout_seconds,
        )

    async def close(self) -> None:
        await self.http_client.aclose()

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self.http_client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as e:
            logger.error("crypto_rpc_timeout", method=method, error=str(e))
            raise ProviderUnavailable("Blockchain RPC timeout") from e
        except httpx.RequestError as e:
            logger.error("crypto_rpc_request_error", method=method, error=str(e))
            raise ProviderUnavailable(f"Blockchain RPC request error: {e}") from e

        if response.status_code != 200:
            logger.error("crypto_rpc_http_error", method=method, status_code=response.status_code)
            raise ProviderUnavailable(
                f"Blockchain RPC unavailable (status: {response.status_code})"
            )

        body = response.json()
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.error("crypto_rpc_error", method=method, error=message)
            raise ProviderUnavailable(f"Blockchain RPC error: {message}")
        return body.get("result")

    async def initiate(self, attempt: FundingAttempt) -> InitiationResult:
        """
        Crypto transfers are pushed by the payer; there is nothing to start.

        The attempt's reference is the transaction hash to watch.
        """
        return InitiationResult(
            reference=attempt.reference,
            provider=self.provider,
            status=ProviderStatus.PENDING,
            external_id=attempt.external_id,
        )

    async def check_status(
        self,
        reference: str,
        external_id: str | None = None,
    ) -> ProviderStatusResult:
        if not _TX_HASH_RE.match(reference):
            return ProviderStatusResult(
                status=ProviderStatus.FAILED,
                reference=reference,
                reason="Invalid payment reference or amount",
            )

        receipt = await self._rpc("eth_getTransactionReceipt", [reference])
        if receipt is None:
            return ProviderStatusResult(
                status=ProviderStatus.PENDING,
                reference=reference,
                reason="Transaction not yet mined",
            )

        if int(receipt.get("status", "0x1"), 16) == 0:
            logger.info("crypto_transaction_reverted", tx_hash=reference)
            return ProviderStatusResult(
                status=ProviderStatus.FAILED,
                reference=reference,
                transaction_id=reference,
                reason="Transaction reverted",
            )

        head = int(await self._rpc("eth_blockNumber", []), 16)
        confirmations = head - int(receipt["blockNumber"], 16) + 1
        metadata = {"blockHash": receipt.get("blockHash"), "confirmations": confirmations}

        if confirmations < self.required_confirmations:
            return ProviderStatusResult(
                status=ProviderStatus.PENDING,
                reference=reference,
                reason=(
                    f"Waiting for confirmations "
                    f"({confirmations}/{self.required_confirmations})"
                ),
                metadata=metadata,
            )

        logger.info(
            "crypto_transaction_confirmed",
            tx_hash=reference,
            confirmations=confirmations,
        )
        return ProviderStatusResult(
            status=ProviderStatus.SUCCESSFUL,
            reference=reference,
            transaction_id=reference,
            metadata=metadata,
        )
