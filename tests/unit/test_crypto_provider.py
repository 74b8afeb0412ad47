"""Unit tests for the JSON-RPC crypto provider."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from card_provisioning.models.exceptions import ProviderUnavailable
from card_provisioning.models.funding import FundingAttempt, ProviderStatus
from card_provisioning.providers.crypto_provider import CryptoProvider

RPC_URL = "http://localhost:8545"
TX_HASH = "0x" + "1f" * 32


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def receipt(block_number: int, status: str = "0x1"):
    return {
        "transactionHash": TX_HASH,
        "blockNumber": hex(block_number),
        "blockHash": "0x" + "aa" * 32,
        "status": status,
    }


@pytest.fixture
def provider():
    return CryptoProvider(rpc_url=RPC_URL, required_confirmations=6)


@pytest.mark.asyncio
class TestCheckStatus:
    async def test_confirmed_transaction(self, provider):
        post = AsyncMock(side_effect=[rpc_result(receipt(100)), rpc_result(hex(105))])

        with patch.object(provider.http_client, "post", post):
            result = await provider.check_status(TX_HASH)

        assert result.status is ProviderStatus.SUCCESSFUL
        assert result.transaction_id == TX_HASH
        assert result.metadata == {"blockHash": "0x" + "aa" * 32, "confirmations": 6}

        methods = [call[1]["json"]["method"] for call in post.call_args_list]
        assert methods == ["eth_getTransactionReceipt", "eth_blockNumber"]
        assert post.call_args_list[0][1]["json"]["params"] == [TX_HASH]

    async def test_not_enough_confirmations(self, provider):
        post = AsyncMock(side_effect=[rpc_result(receipt(100)), rpc_result(hex(102))])

        with patch.object(provider.http_client, "post", post):
            result = await provider.check_status(TX_HASH)

        assert result.status is ProviderStatus.PENDING
        assert result.metadata["confirmations"] == 3
        assert "3/6" in result.reason

    async def test_unmined_transaction_is_pending(self, provider):
        with patch.object(provider.http_client, "post", AsyncMock(return_value=rpc_result(None))):
            result = await provider.check_status(TX_HASH)

        assert result.status is ProviderStatus.PENDING

    async def test_reverted_transaction_fails(self, provider):
        with patch.object(
            provider.http_client,
            "post",
            AsyncMock(return_value=rpc_result(receipt(100, status="0x0"))),
        ):
            result = await provider.check_status(TX_HASH)

        assert result.status is ProviderStatus.FAILED
        assert result.reason == "Transaction reverted"

    async def test_malformed_hash_fails_without_request(self, provider):
        post = AsyncMock()

        with patch.object(provider.http_client, "post", post):
            result = await provider.check_status("0x1234")

        assert result.status is ProviderStatus.FAILED
        assert result.reason == "Invalid payment reference or amount"
        post.assert_not_called()

    async def test_rpc_error_is_unavailable(self, provider):
        response = httpx.Response(
            200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}}
        )

        with patch.object(provider.http_client, "post", AsyncMock(return_value=response)):
            with pytest.raises(ProviderUnavailable, match="boom"):
                await provider.check_status(TX_HASH)

    async def test_http_error_is_unavailable(self, provider):
        with patch.object(provider.http_client, "post", AsyncMock(return_value=httpx.Response(502))):
            with pytest.raises(ProviderUnavailable, match="status: 502"):
                await provider.check_status(TX_HASH)

    async def test_timeout_is_unavailable(self, provider):
        with patch.object(
            provider.http_client, "post", AsyncMock(side_effect=httpx.ConnectTimeout("slow"))
        ):
            with pytest.raises(ProviderUnavailable, match="timeout"):
                await provider.check_status(TX_HASH)


@pytest.mark.asyncio
async def test_initiate_watches_the_given_hash(provider):
    attempt = FundingAttempt.create(
        reference=TX_HASH, amount=1, currency="ETH", provider="crypto"
    )

    result = await provider.initiate(attempt)

    assert result.reference == TX_HASH
    assert result.status is ProviderStatus.PENDING
