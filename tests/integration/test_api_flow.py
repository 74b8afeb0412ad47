"""End-to-end API tests against a real database and sandbox providers.

The app runs in-process over httpx's ASGI transport, so background polling
tasks share the test's event loop.
"""

import asyncio
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from card_provisioning.api import dependencies
from card_provisioning.api.main import app
from card_provisioning.identity.verifier import SandboxIdentityVerifier
from card_provisioning.ledger.dedup import FundingEventConsumer, RecentEventCache
from card_provisioning.models.funding import Provider
from card_provisioning.providers.factory import ProviderFactory
from card_provisioning.providers.sandbox_provider import SandboxProvider
from card_provisioning.provisioning.cards import CardService
from card_provisioning.provisioning.flow import FundingFlow
from card_provisioning.provisioning.orchestrator import CardProvisioner
from card_provisioning.sessions.accounts import AccountService
from card_provisioning.sessions.store import SessionStore

ADDRESS = "0x" + "5a" * 20
OTHER_ADDRESS = "0x" + "6b" * 20


@pytest.fixture
def providers():
    factory = ProviderFactory(allow_sandbox=False)
    for rail in Provider:
        factory.register(rail, SandboxProvider(rail))
    return factory


@pytest_asyncio.fixture
async def api_client(session_factory, providers):
    store = SessionStore(session_factory=session_factory)
    provisioner = CardProvisioner(store, session_factory=session_factory)
    flow = FundingFlow(
        providers, provisioner, poll_interval_seconds=0.01, poll_timeout_seconds=2.0
    )
    recent_events = RecentEventCache(max_size=100)

    app.dependency_overrides.update(
        {
            dependencies.get_session_store: lambda: store,
            dependencies.get_card_provisioner: lambda: provisioner,
            dependencies.get_funding_flow: lambda: flow,
            dependencies.get_event_consumer: lambda: FundingEventConsumer(
                provisioner, recent_events, confirm=flow.confirm_event
            ),
            dependencies.get_card_service: lambda: CardService(session_factory),
            dependencies.get_account_service: lambda: AccountService(
                SandboxIdentityVerifier(), store, session_factory
            ),
        }
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await flow.close()
    app.dependency_overrides.clear()


async def login(
    client: httpx.AsyncClient, address: str = ADDRESS, ens_name: str = "demo1.eth"
) -> dict:
    response = await client.post("/auth/login", json={"address": address, "ensName": ens_name})
    body = response.json()
    assert body["success"] is True, body
    return body["data"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.integration
class TestProvisionFlow:
    @pytest.mark.asyncio
    async def test_provision_is_idempotent(self, api_client):
        session = (await login(api_client))["session"]
        request = {"provider": "crypto", "reference": "crypto_abc", "amount": 50, "currency": "USD"}

        first = await api_client.post("/cards/provision", json=request, headers=bearer(session["token"]))
        second = await api_client.post("/cards/provision", json=request, headers=bearer(session["token"]))

        assert first.status_code == 200
        card = first.json()["data"]["card"]
        assert card["userId"] == session["userId"]
        assert card["spendingLimit"] == 4000
        assert card["currency"] == "USD"
        assert first.json()["data"]["verification"]["status"] == "success"
        assert second.json()["data"]["card"]["id"] == card["id"]

        listing = await api_client.get("/cards", headers=bearer(session["token"]))
        assert [c["id"] for c in listing.json()["data"]["cards"]] == [card["id"]]

    @pytest.mark.asyncio
    async def test_payment_of_another_account_is_401(self, api_client):
        owner = (await login(api_client))["session"]
        stranger = (await login(api_client, OTHER_ADDRESS, "demo2.eth"))["session"]
        request = {"provider": "crypto", "reference": "crypto_mine", "amount": 50, "currency": "USD"}

        await api_client.post("/cards/provision", json=request, headers=bearer(owner["token"]))
        replay = await api_client.post(
            "/cards/provision", json=request, headers=bearer(stranger["token"])
        )

        assert replay.status_code == 401
        assert replay.json() == {
            "success": False,
            "error": "Funding event was already claimed by another account",
        }

    @pytest.mark.asyncio
    async def test_unconfirmed_payment_provisions_nothing(self, api_client):
        session = (await login(api_client))["session"]

        response = await api_client.post(
            "/cards/provision",
            json={"provider": "mtn", "reference": "momo-1", "amount": 50, "currency": "GHS"},
            headers=bearer(session["token"]),
        )

        assert response.json() == {"success": False, "error": "Payment failed"}
        listing = await api_client.get("/cards", headers=bearer(session["token"]))
        assert listing.json()["data"]["cards"] == []

    @pytest.mark.asyncio
    async def test_logout_revokes_access(self, api_client):
        session = (await login(api_client))["session"]

        logout = await api_client.post("/auth/logout", headers=bearer(session["token"]))
        listing = await api_client.get("/cards", headers=bearer(session["token"]))

        assert logout.json() == {"success": True}
        assert listing.status_code == 401


def observed(
    address: str, source_tx_id: str, amount: int = 10000, funding_type: str = "mtn"
) -> dict:
    return {
        "userAddressOrId": address,
        "amount": amount,
        "currency": "usd",
        "fundingType": funding_type,
        "sourceTxId": source_tx_id,
    }


@pytest.mark.integration
class TestFundingEvents:
    @pytest.mark.asyncio
    async def test_observed_events_are_provisioned_once(self, api_client, providers):
        session = (await login(api_client))["session"]
        providers.get(Provider.MTN).remember("tx-998", Decimal("100"))
        events = {
            "events": [
                observed(ADDRESS, "tx-998"),
                observed(ADDRESS, "tx-998"),
                observed(OTHER_ADDRESS, "tx-999", amount=500),
            ]
        }

        response = await api_client.post(
            "/cards/funding-events", json=events, headers=bearer(session["token"])
        )

        results = response.json()["data"]["results"]
        assert [r["outcome"] for r in results] == [
            "provisioned",
            "skipped_cached",
            "skipped_other_user",
        ]
        assert results[0]["eventKey"].startswith("mtn-")

        replay = await api_client.post(
            "/cards/funding-events", json={"events": events["events"][:1]}, headers=bearer(session["token"])
        )
        assert replay.json()["data"]["results"][0]["outcome"] == "skipped_cached"

        listing = await api_client.get("/cards", headers=bearer(session["token"]))
        cards = listing.json()["data"]["cards"]
        assert len(cards) == 1
        assert cards[0]["provisioningEventKey"] == results[0]["eventKey"]
        assert cards[0]["spendingLimit"] == 8000

    @pytest.mark.asyncio
    async def test_card_is_sized_from_the_confirmed_amount(self, api_client, providers):
        session = (await login(api_client))["session"]
        providers.get(Provider.MTN).remember("tx-5", Decimal("100"))

        response = await api_client.post(
            "/cards/funding-events",
            json={"events": [observed(ADDRESS, "tx-5", amount=999_999_999)]},
            headers=bearer(session["token"]),
        )

        assert response.json()["data"]["results"][0]["outcome"] == "provisioned"
        listing = await api_client.get("/cards", headers=bearer(session["token"]))
        assert listing.json()["data"]["cards"][0]["spendingLimit"] == 8000

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "funding_type,source_tx_id,error",
        [
            ("made-up", "never-happened", "Unknown provider: made-up"),
            ("mtn", "never-happened", "Payment not found"),
        ],
    )
    async def test_unconfirmed_events_provision_nothing(
        self, api_client, funding_type, source_tx_id, error
    ):
        session = (await login(api_client))["session"]

        response = await api_client.post(
            "/cards/funding-events",
            json={
                "events": [
                    observed(ADDRESS, source_tx_id, amount=999_999_999, funding_type=funding_type)
                ]
            },
            headers=bearer(session["token"]),
        )

        result = response.json()["data"]["results"][0]
        assert result["outcome"] == "rejected"
        assert error in result["error"]
        listing = await api_client.get("/cards", headers=bearer(session["token"]))
        assert listing.json()["data"]["cards"] == []

    @pytest.mark.asyncio
    async def test_event_for_a_verified_payment_reuses_its_card(self, api_client):
        session = (await login(api_client))["session"]
        provisioned = await api_client.post(
            "/cards/provision",
            json={"provider": "mtn", "reference": "momo-500", "amount": 100, "currency": "USD"},
            headers=bearer(session["token"]),
        )
        card = provisioned.json()["data"]["card"]

        response = await api_client.post(
            "/cards/funding-events",
            json={"events": [observed(ADDRESS, "momo-500")]},
            headers=bearer(session["token"]),
        )

        result = response.json()["data"]["results"][0]
        assert result["outcome"] == "provisioned"
        assert result["cardId"] == card["id"]
        listing = await api_client.get("/cards", headers=bearer(session["token"]))
        assert len(listing.json()["data"]["cards"]) == 1

    @pytest.mark.asyncio
    async def test_event_claimed_by_another_account(self, api_client, providers):
        owner = (await login(api_client))["session"]
        stranger = (await login(api_client, OTHER_ADDRESS, "demo2.eth"))["session"]
        providers.get(Provider.MTN).remember("tx-77", Decimal("100"))

        await api_client.post(
            "/cards/funding-events",
            json={"events": [observed(ADDRESS, "tx-77")]},
            headers=bearer(owner["token"]),
        )
        response = await api_client.post(
            "/cards/funding-events",
            json={"events": [observed(OTHER_ADDRESS, "tx-77")]},
            headers=bearer(stranger["token"]),
        )

        assert response.json()["data"]["results"][0]["outcome"] == "skipped_cached"
        listing = await api_client.get("/cards", headers=bearer(stranger["token"]))
        assert listing.json()["data"]["cards"] == []

    @pytest.mark.asyncio
    async def test_empty_batch_is_400(self, api_client):
        session = (await login(api_client))["session"]

        response = await api_client.post(
            "/cards/funding-events", json={"events": []}, headers=bearer(session["token"])
        )

        assert response.status_code == 400


@pytest.mark.integration
class TestMomoPolling:
    async def wait_for_attempt(self, client, token, reference, predicate):
        for _ in range(100):
            response = await client.post(
                "/payments/attempt-status", json={"reference": reference}, headers=bearer(token)
            )
            data = response.json()["data"]
            if predicate(data):
                return data
            await asyncio.sleep(0.02)
        raise AssertionError(f"attempt {reference} did not settle: {data}")

    @pytest.mark.asyncio
    async def test_confirmed_collection_provisions_card(self, api_client):
        session = (await login(api_client))["session"]

        response = await api_client.post(
            "/payments/initiate-momo",
            json={
                "provider": "mtn",
                "amount": 100,
                "currency": "GHS",
                "phoneNumber": "0241234567",
                "externalId": "order-1",
            },
            headers=bearer(session["token"]),
        )

        started = response.json()["data"]
        assert started["status"] == "pending"
        assert started["externalId"] == "order-1"

        data = await self.wait_for_attempt(
            api_client, session["token"], started["reference"], lambda d: d["card"] is not None
        )
        assert data["status"] == "success"
        assert data["isVerifying"] is False
        assert data["card"]["spendingLimit"] == 8000
        assert data["card"]["currency"] == "GHS"

    @pytest.mark.asyncio
    async def test_failed_collection_provisions_nothing(self, api_client):
        session = (await login(api_client))["session"]

        response = await api_client.post(
            "/payments/initiate-momo",
            json={
                "amount": 50,
                "currency": "GHS",
                "phoneNumber": "0241234567",
                "externalId": "order-2",
            },
            headers=bearer(session["token"]),
        )
        reference = response.json()["data"]["reference"]

        data = await self.wait_for_attempt(
            api_client, session["token"], reference, lambda d: d["status"] == "failed"
        )
        assert data["error"] == "Payment failed"
        assert data["card"] is None

    @pytest.mark.asyncio
    async def test_attempts_are_private(self, api_client):
        owner = (await login(api_client))["session"]
        stranger = (await login(api_client, OTHER_ADDRESS, "demo2.eth"))["session"]

        response = await api_client.post(
            "/payments/initiate-momo",
            json={
                "amount": 10,
                "currency": "GHS",
                "phoneNumber": "0241234567",
                "externalId": "order-3",
            },
            headers=bearer(owner["token"]),
        )
        reference = response.json()["data"]["reference"]

        peek = await api_client.post(
            "/payments/attempt-status", json={"reference": reference}, headers=bearer(stranger["token"])
        )
        assert peek.json() == {"success": False, "error": "Payment attempt not found"}


@pytest.mark.integration
class TestVisaFlow:
    @pytest.mark.asyncio
    async def test_card_management(self, api_client):
        session = (await login(api_client))["session"]
        provisioned = await api_client.post(
            "/cards/provision",
            json={"provider": "crypto", "reference": "crypto_visa", "amount": 200, "currency": "USD"},
            headers=bearer(session["token"]),
        )
        card_id = provisioned.json()["data"]["card"]["id"]
        user_id = session["userId"]

        recorded = await api_client.post(
            "/visa/record-card",
            json={
                "userId": user_id,
                "cardId": card_id,
                "visaAccountId": "visa-acct-9",
                "paymentReference": "crypto_visa",
                "paymentMethod": "crypto",
            },
        )
        assert recorded.json()["data"]["visaAccountId"] == "visa-acct-9"

        updated = await api_client.post(
            "/visa/update-card-limit",
            json={"cardId": card_id, "newLimit": 120.5, "userId": user_id},
        )
        assert updated.json()["data"]["newLimit"] == 120.5

        deactivated = await api_client.post(
            "/visa/deactivate-card", json={"cardId": card_id, "userId": user_id}
        )
        assert deactivated.json()["data"]["transactionHash"].startswith("0x")

        frozen = await api_client.post(
            "/visa/update-card-limit",
            json={"cardId": card_id, "newLimit": 50, "userId": user_id},
        )
        assert frozen.json() == {"success": False, "error": "Card is deactivated"}

        listing = await api_client.get("/cards", headers=bearer(session["token"]))
        card = listing.json()["data"]["cards"][0]
        assert card["spendingLimit"] == 12050
        assert card["isActive"] is False
