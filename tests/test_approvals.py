"""Tests for the dual-approval gate on manual mint, burn and transfer."""

import uuid

import pytest

from tests.conftest import (
    CLIENT_ID,
    OPERATOR_ID,
    OTHER_TENANT_ID,
    PLATFORM_ADMIN_ID,
    SECOND_TENANT_ADMIN_ID,
    TENANT_ADMIN_ID,
    TENANT_ID,
    make_actor,
)
from tokenledger.core.exceptions import (
    InsufficientBalance,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from tokenledger.models.enums import ApprovalOperation, ApprovalStatus, TransactionType, UserRole
from tokenledger.models.ledger import TokenTransaction
from tokenledger.modules.approvals.service import ApprovalService, normalize_parameters
from tokenledger.modules.ledger.service import HolderRef, LedgerService

pytestmark = pytest.mark.anyio

REQUESTER = make_actor(UserRole.OPERATOR, OPERATOR_ID)
TENANT_APPROVER = make_actor(UserRole.TENANT_ADMIN, TENANT_ADMIN_ID)
PLATFORM_APPROVER = make_actor(UserRole.PLATFORM_ADMIN, PLATFORM_ADMIN_ID)


def _gate(db, tenant_id=TENANT_ID) -> ApprovalService:
    return ApprovalService(db, tenant_id)


async def _approved(db, asset, operation=ApprovalOperation.MINT, **parameters):
    gate = _gate(db)
    req = await gate.request(operation, asset.id, {"amount": 100, **parameters}, REQUESTER)
    await gate.approve(req.id, TENANT_APPROVER)
    await gate.approve(req.id, PLATFORM_APPROVER)
    await db.commit()
    return req


class TestParameters:
    def test_mint_keeps_amount_and_reason(self):
        assert normalize_parameters(ApprovalOperation.MINT, {"amount": 5, "reason": "r"}) == {
            "amount": 5,
            "reason": "r",
        }

    @pytest.mark.parametrize("amount", [0, -3, "10", None, True])
    def test_amount_validated(self, amount):
        with pytest.raises(ValidationError):
            normalize_parameters(ApprovalOperation.MINT, {"amount": amount})

    def test_transfer_needs_client(self):
        with pytest.raises(ValidationError):
            normalize_parameters(ApprovalOperation.TRANSFER, {"amount": 5})

    def test_client_burn_uses_client_id(self):
        params = normalize_parameters(
            ApprovalOperation.BURN,
            {"amount": 5, "from_holder_type": "client", "client_id": str(CLIENT_ID)},
        )
        assert params["from_holder_type"] == "client"
        assert params["from_holder_id"] == str(CLIENT_ID)


class TestFlow:
    async def test_request_starts_pending(self, db, asset):
        req = await _gate(db).request(ApprovalOperation.MINT, asset.id, {"amount": 100}, REQUESTER)
        assert req.status == ApprovalStatus.REQUESTED
        assert req.requested_by == OPERATOR_ID
        assert await _gate(db).pending_count() == 1

    async def test_full_mint_flow(self, db, asset):
        req = await _approved(db, asset, reason="Capital increase")
        gate = _gate(db)
        assert (await gate.get(req.id)).status == ApprovalStatus.FULLY_APPROVED

        executed = await gate.execute(req.id, TENANT_APPROVER)
        await db.commit()

        assert executed.status == ApprovalStatus.EXECUTED
        assert executed.executed_by == TENANT_ADMIN_ID
        tx = await db.get(TokenTransaction, executed.executed_transaction_id)
        assert tx.transaction_type == TransactionType.MINT
        assert tx.reference_id == req.id
        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset.id)
        assert refreshed.total_supply == 1100
        assert await gate.pending_count() == 0

    async def test_transfer_executes_to_client(self, db, asset):
        req = await _approved(db, asset, ApprovalOperation.TRANSFER, client_id=str(CLIENT_ID))
        await _gate(db).execute(req.id, TENANT_APPROVER)
        await db.commit()

        ledger = LedgerService(db, TENANT_ID)
        assert await ledger.get_holder_balance(asset.id, HolderRef.client(CLIENT_ID)) == 100
        assert (await ledger.get_asset(asset.id)).circulating_supply == 100

    async def test_burn_executes(self, db, asset):
        req = await _approved(db, asset, ApprovalOperation.BURN)
        await _gate(db).execute(req.id, TENANT_APPROVER)
        refreshed = await LedgerService(db, TENANT_ID).get_asset(asset.id)
        assert refreshed.burned_supply == 100
        assert refreshed.fideitec_balance == 900

    async def test_execute_runs_on_paused_asset(self, db, asset):
        req = await _approved(db, asset)
        await LedgerService(db, TENANT_ID).pause(asset.id)
        await db.commit()
        executed = await _gate(db).execute(req.id, TENANT_APPROVER)
        assert executed.status == ApprovalStatus.EXECUTED

    async def test_failed_execution_stays_approved(self, db, asset):
        req = await _approved(db, asset, ApprovalOperation.BURN, from_holder_type="client",
                              from_holder_id=str(CLIENT_ID))
        req_id = req.id
        with pytest.raises(InsufficientBalance):
            await _gate(db).execute(req_id, TENANT_APPROVER)
        await db.rollback()
        assert (await _gate(db).get(req_id)).status == ApprovalStatus.FULLY_APPROVED

    async def test_execute_requires_full_approval(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        await gate.approve(req.id, TENANT_APPROVER)
        with pytest.raises(InvalidStateTransition):
            await gate.execute(req.id, TENANT_APPROVER)

    async def test_execute_only_once(self, db, asset):
        req = await _approved(db, asset)
        gate = _gate(db)
        await gate.execute(req.id, TENANT_APPROVER)
        with pytest.raises(InvalidStateTransition):
            await gate.execute(req.id, TENANT_APPROVER)

    async def test_closed_asset_rejects_request(self, db, asset):
        await LedgerService(db, TENANT_ID).close(asset.id)
        with pytest.raises(InvalidStateTransition):
            await _gate(db).request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)


class TestSeparationOfDuties:
    async def test_requester_cannot_tenant_approve(self, db, asset):
        requester = make_actor(UserRole.TENANT_ADMIN, TENANT_ADMIN_ID)
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, requester)
        with pytest.raises(PermissionDenied):
            await gate.approve_tenant(req.id, requester)

    async def test_operator_cannot_approve(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        with pytest.raises(PermissionDenied):
            await gate.approve_tenant(req.id, make_actor(UserRole.OPERATOR, uuid.uuid4()))

    async def test_tenant_admin_cannot_platform_approve(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        await gate.approve(req.id, TENANT_APPROVER)
        with pytest.raises(PermissionDenied):
            await gate.approve(req.id, make_actor(UserRole.TENANT_ADMIN, SECOND_TENANT_ADMIN_ID))

    async def test_same_platform_admin_cannot_sign_twice(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        await gate.approve(req.id, PLATFORM_APPROVER)
        assert (await gate.get(req.id)).status == ApprovalStatus.TENANT_APPROVED
        with pytest.raises(PermissionDenied):
            await gate.approve(req.id, PLATFORM_APPROVER)

    async def test_platform_approval_skips_no_step(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        with pytest.raises(InvalidStateTransition):
            await gate.approve_platform(req.id, PLATFORM_APPROVER)


class TestReject:
    async def test_reject_with_reason(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        rejected = await gate.reject(req.id, TENANT_APPROVER, " Not justified ")
        assert rejected.status == ApprovalStatus.REJECTED
        assert rejected.rejection_reason == "Not justified"
        assert rejected.rejected_by == TENANT_ADMIN_ID

    async def test_reason_required(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        with pytest.raises(ValidationError):
            await gate.reject(req.id, TENANT_APPROVER, "")

    async def test_rejected_is_terminal(self, db, asset):
        gate = _gate(db)
        req = await gate.request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        await gate.reject(req.id, TENANT_APPROVER, "no")
        with pytest.raises(InvalidStateTransition):
            await gate.approve(req.id, TENANT_APPROVER)


class TestAuditAndScope:
    async def test_history_records_every_step(self, db, asset):
        req = await _approved(db, asset)
        gate = _gate(db)
        await gate.execute(req.id, TENANT_APPROVER)
        await db.commit()

        history = await gate.history(req.id)
        assert [h.action for h in history] == [
            "requested",
            "tenant_approved",
            "platform_approved",
            "executed",
        ]
        assert [h.new_status for h in history] == [
            "requested",
            "tenant_approved",
            "fully_approved",
            "executed",
        ]
        assert history[0].previous_status is None
        assert history[1].actor_id == TENANT_ADMIN_ID
        assert history[1].ip_address == "127.0.0.1"
        assert history[3].details["transaction_id"]

    async def test_other_tenant_cannot_see_request(self, db, asset):
        req = await _gate(db).request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        with pytest.raises(NotFoundError):
            await _gate(db, OTHER_TENANT_ID).get(req.id)

    async def test_platform_scope_sees_all_tenants(self, db, asset):
        req = await _gate(db).request(ApprovalOperation.MINT, asset.id, {"amount": 1}, REQUESTER)
        platform = ApprovalService(db, None)
        assert [r.id for r in await platform.list_pending()] == [req.id]
        assert (await platform.get(req.id)).id == req.id

    async def test_platform_scope_cannot_request(self, db, asset):
        with pytest.raises(ValidationError):
            await ApprovalService(db, None).request(
                ApprovalOperation.MINT, asset.id, {"amount": 1}, PLATFORM_APPROVER
            )
