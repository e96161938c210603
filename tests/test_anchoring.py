"""Tests for blockchain anchoring of certificate fingerprints."""

import asyncio

import pytest

from tests.conftest import CLIENT_ID, TENANT_ADMIN_ID, TENANT_ID, FakeChainClient, paid_order
from tokenledger.core.chain import (
    NETWORKS,
    ChainError,
    DisabledChainClient,
    decode_payload,
    encode_payload,
    explorer_tx_url,
    get_network,
)
from tokenledger.core.exceptions import AnchorError, ValidationError
from tokenledger.modules.anchoring.service import (
    ANCHOR_PAYLOAD_TYPE,
    ANCHOR_PAYLOAD_VERSION,
    AnchorService,
)
from tokenledger.modules.certificates.service import CertificateService
from tokenledger.modules.orders.service import OrderService

pytestmark = pytest.mark.anyio


async def _certificate(db, asset):
    order = await paid_order(db, asset.id, CLIENT_ID, 10)
    result = await OrderService(db, TENANT_ID).complete(order.id)
    await db.commit()
    return result.certificate


class TestAnchor:
    async def test_anchor_attaches_tx(self, db, asset, chain):
        cert = await _certificate(db, asset)
        result = await AnchorService(db, chain, TENANT_ID).anchor(cert.id)

        assert result.already_certified is False
        assert result.network == "polygon-amoy"
        assert result.explorer_url == f"https://amoy.polygonscan.com/tx/{result.tx_hash}"

        payload = chain.submitted[result.tx_hash]
        assert payload["type"] == ANCHOR_PAYLOAD_TYPE
        assert payload["version"] == ANCHOR_PAYLOAD_VERSION
        assert payload["certificate_id"] == str(cert.id)
        assert payload["hash"] == cert.content_hash
        assert "timestamp" in payload

        stored = await CertificateService(db, TENANT_ID).get(cert.id)
        assert stored.is_blockchain_certified is True
        assert stored.blockchain_tx_hash == result.tx_hash
        assert stored.blockchain_certified_at is not None

    async def test_anchor_is_idempotent(self, db, asset, chain):
        cert = await _certificate(db, asset)
        anchors = AnchorService(db, chain, TENANT_ID)
        first = await anchors.anchor(cert.id)
        second = await anchors.anchor(cert.id)

        assert second.already_certified is True
        assert second.tx_hash == first.tx_hash
        assert len(chain.submitted) == 1

    async def test_chain_failure_leaves_certificate_unanchored(self, db, asset):
        cert = await _certificate(db, asset)
        failing = FakeChainClient(fail=True)
        with pytest.raises(AnchorError):
            await AnchorService(db, failing, TENANT_ID).anchor(cert.id)

        stored = await CertificateService(db, TENANT_ID).get(cert.id)
        assert stored.is_blockchain_certified is False
        assert stored.blockchain_tx_hash is None

    async def test_timeout(self, db, asset):
        cert = await _certificate(db, asset)
        slow = FakeChainClient(delay=1.0)
        with pytest.raises(AnchorError, match="timed out"):
            await AnchorService(db, slow, TENANT_ID, timeout=0.05).anchor(cert.id)
        assert (await CertificateService(db, TENANT_ID).get(cert.id)).is_blockchain_certified is False

    async def test_disabled_chain(self, db, asset):
        cert = await _certificate(db, asset)
        with pytest.raises(AnchorError, match="not configured"):
            await AnchorService(db, DisabledChainClient(), TENANT_ID).anchor(cert.id)

    async def test_revoked_certificate_rejected(self, db, asset, chain):
        cert = await _certificate(db, asset)
        await CertificateService(db, TENANT_ID).revoke(cert.id, "error", TENANT_ADMIN_ID)
        await db.commit()
        with pytest.raises(ValidationError):
            await AnchorService(db, chain, TENANT_ID).anchor(cert.id)
        assert chain.submitted == {}

    async def test_tampered_certificate_not_anchored(self, db, asset, chain):
        cert = await _certificate(db, asset)
        cert.token_amount = 11
        await db.commit()
        with pytest.raises(AnchorError, match="does not match"):
            await AnchorService(db, chain, TENANT_ID).anchor(cert.id)
        assert chain.submitted == {}

    async def test_anchor_applies_platform_signature(self, db, asset, chain):
        cert = await _certificate(db, asset)
        await AnchorService(db, chain, TENANT_ID).anchor(cert.id)

        stored = await CertificateService(db, TENANT_ID).get(cert.id)
        assert stored.platform_signature_address == chain.address
        assert (await CertificateService(db, TENANT_ID).signatures(cert.id))["platform_valid"] is True


class TestPendingTransaction:
    async def test_unconfirmed_tx_is_resumed_not_resubmitted(self, db, asset):
        cert = await _certificate(db, asset)
        chain = FakeChainClient(confirm_fail=True)
        anchors = AnchorService(db, chain, TENANT_ID)
        with pytest.raises(AnchorError):
            await anchors.anchor(cert.id)

        stored = await CertificateService(db, TENANT_ID).get(cert.id)
        pending = stored.blockchain_pending_tx_hash
        assert pending in chain.submitted
        assert stored.is_blockchain_certified is False

        chain.confirm_fail = False
        result = await anchors.anchor(cert.id)
        assert result.tx_hash == pending
        assert len(chain.submitted) == 1
        stored = await CertificateService(db, TENANT_ID).get(cert.id)
        assert stored.blockchain_pending_tx_hash is None
        assert stored.blockchain_tx_hash == pending

    async def test_confirm_timeout_keeps_pending_hash(self, db, asset, chain):
        cert = await _certificate(db, asset)

        async def never_confirms(tx_hash):
            await asyncio.sleep(1.0)

        chain.confirm = never_confirms
        with pytest.raises(AnchorError, match="timed out"):
            await AnchorService(db, chain, TENANT_ID, timeout=0.05).anchor(cert.id)
        stored = await CertificateService(db, TENANT_ID).get(cert.id)
        assert stored.blockchain_pending_tx_hash in chain.submitted

    async def test_reverted_tx_is_resubmitted(self, db, asset):
        cert = await _certificate(db, asset)
        chain = FakeChainClient(revert=True)
        anchors = AnchorService(db, chain, TENANT_ID)
        with pytest.raises(AnchorError, match="reverted"):
            await anchors.anchor(cert.id)
        stored = await CertificateService(db, TENANT_ID).get(cert.id)
        assert stored.blockchain_pending_tx_hash is None

        chain.revert = False
        result = await anchors.anchor(cert.id)
        assert len(chain.submitted) == 2
        assert chain.confirmed == [result.tx_hash]


class TestBestEffort:
    async def test_success(self, db, asset, chain):
        cert = await _certificate(db, asset)
        outcome = await AnchorService(db, chain, TENANT_ID).anchor_best_effort(cert.id)
        assert outcome["certified"] is True
        assert outcome["certificate_id"] == str(cert.id)

    async def test_failure_becomes_warning(self, db, asset):
        cert = await _certificate(db, asset)
        outcome = await AnchorService(db, FakeChainClient(fail=True), TENANT_ID).anchor_best_effort(
            cert.id
        )
        assert outcome["certified"] is False
        assert "unreachable" in outcome["warning"]


class TestVerifyOnChain:
    async def test_matches(self, db, asset, chain):
        cert = await _certificate(db, asset)
        anchors = AnchorService(db, chain, TENANT_ID)
        await anchors.anchor(cert.id)

        result = await anchors.verify_on_chain(cert.id)
        assert result["matches"] is True
        assert result["on_chain_hash"] == cert.content_hash

    async def test_unanchored_rejected(self, db, asset, chain):
        cert = await _certificate(db, asset)
        with pytest.raises(ValidationError):
            await AnchorService(db, chain, TENANT_ID).verify_on_chain(cert.id)

    async def test_tampered_after_anchor(self, db, asset, chain):
        cert = await _certificate(db, asset)
        anchors = AnchorService(db, chain, TENANT_ID)
        result = await anchors.anchor(cert.id)
        chain.submitted[result.tx_hash] = {**chain.submitted[result.tx_hash], "hash": "f" * 64}

        assert (await anchors.verify_on_chain(cert.id))["matches"] is False


class TestStatusAndBacklog:
    async def test_status(self, db, chain):
        status = await AnchorService(db, chain, TENANT_ID).status()
        assert status["enabled"] is True
        assert status["chain_id"] == 80002
        assert status["is_testnet"] is True
        assert status["balance"] == "1.5"

    async def test_status_disabled(self, db):
        status = await AnchorService(db, DisabledChainClient("base"), TENANT_ID).status()
        assert status["enabled"] is False
        assert status["chain_id"] == 8453
        assert status["balance"] is None
        assert status["address"] is None

    async def test_unanchored_backlog(self, db, asset, chain):
        cert = await _certificate(db, asset)
        anchors = AnchorService(db, chain)
        assert await anchors.unanchored() == [cert.id]
        await anchors.anchor(cert.id)
        assert await anchors.unanchored() == []


class TestChainHelpers:
    def test_networks(self):
        assert {key: n.chain_id for key, n in NETWORKS.items()} == {
            "polygon": 137,
            "base": 8453,
            "polygon-amoy": 80002,
            "base-sepolia": 84532,
        }

    def test_unknown_network(self):
        with pytest.raises(ChainError):
            get_network("ethereum")

    def test_explorer_url(self):
        assert explorer_tx_url("base-sepolia", "0xabc") == "https://sepolia.basescan.org/tx/0xabc"

    def test_payload_codec(self):
        payload = {"type": ANCHOR_PAYLOAD_TYPE, "hash": "ab" * 32}
        assert decode_payload(encode_payload(payload)) == payload

    def test_garbage_payload(self):
        with pytest.raises(ChainError):
            decode_payload(b"\xff\xfe")
