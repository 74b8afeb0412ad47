"""Unit tests for the sandbox identity verifier."""

import pytest

from card_provisioning.identity import SandboxIdentityVerifier, is_wallet_address

ADDRESS = "0x" + "Ab" * 20


@pytest.fixture
def verifier():
    return SandboxIdentityVerifier()


def test_is_wallet_address():
    assert is_wallet_address(ADDRESS)
    assert not is_wallet_address("0x1234")
    assert not is_wallet_address(None)


@pytest.mark.asyncio
class TestSandboxIdentityVerifier:
    @pytest.mark.parametrize(
        "name", ["test1.eth", "demo42.eth", "morph7.eth", "vitalik.eth", "Alice.ETH", "bob.eth"]
    )
    async def test_known_names_are_accepted(self, verifier, name):
        result = await verifier.verify(name, ADDRESS)

        assert result.is_valid
        assert result.resolved_address == ADDRESS.lower()

    async def test_bare_wallet_is_accepted(self, verifier):
        result = await verifier.verify(None, ADDRESS)

        assert result.is_valid
        assert result.resolved_address == ADDRESS.lower()

    async def test_unknown_name_is_rejected(self, verifier):
        result = await verifier.verify("mallory.eth", ADDRESS)

        assert not result.is_valid
        assert result.error == "ENS name not found or not owned by this address"

    async def test_malformed_address_is_rejected(self, verifier):
        result = await verifier.verify("test1.eth", "not-an-address")

        assert not result.is_valid
        assert result.error == "Invalid wallet address"
