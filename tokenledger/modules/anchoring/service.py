"""Blockchain anchoring of certificate fingerprints.

Anchoring never runs inside the settlement transaction.  ``anchor`` commits
whatever the session holds, talks to the chain without any row lock held,
then re-locks the certificate and attaches the result once.  Chain failures
leave the certificate untouched so a later attempt (manual endpoint or the
``retry_unanchored_certificates`` beat task) can try again.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import asdict, dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.chain import ChainClient, ChainError, ChainReverted, get_network
from tokenledger.core.config import settings
from tokenledger.core.exceptions import AnchorError, LedgerError, NotFoundError, ValidationError
from tokenledger.models.base import utcnow
from tokenledger.models.certificates import Certificate
from tokenledger.models.enums import CertificateStatus
from tokenledger.modules.certificates.service import certificate_fingerprint, sign_as_platform

logger = structlog.get_logger()

ANCHOR_PAYLOAD_TYPE = "FIDEITEC_CERTIFICATE"
ANCHOR_PAYLOAD_VERSION = "1.0"


@dataclass(frozen=True)
class AnchorResult:
    certificate_id: uuid.UUID
    tx_hash: str
    explorer_url: str | None
    network: str
    already_certified: bool = False
    block_number: int | None = None


def anchor_payload(cert: Certificate, fingerprint: str) -> dict[str, Any]:
    return {
        "type": ANCHOR_PAYLOAD_TYPE,
        "version": ANCHOR_PAYLOAD_VERSION,
        "certificate_id": str(cert.id),
        "hash": fingerprint,
        "timestamp": utcnow().isoformat(),
    }


class AnchorService:
    def __init__(
        self,
        db: AsyncSession,
        chain: ChainClient,
        tenant_id: uuid.UUID | None = None,
        timeout: float = settings.ANCHOR_TIMEOUT_SECONDS,
    ) -> None:
        self.db = db
        self.chain = chain
        self.tenant_id = tenant_id
        self.timeout = timeout

    async def _load(self, certificate_id: uuid.UUID, *, lock: bool = False) -> Certificate:
        stmt = select(Certificate).where(Certificate.id == certificate_id)
        if self.tenant_id is not None:
            stmt = stmt.where(Certificate.tenant_id == self.tenant_id)
        if lock:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        cert = await self.db.scalar(stmt)
        if cert is None:
            raise NotFoundError("Certificate not found", {"certificate_id": str(certificate_id)})
        return cert

    @staticmethod
    def _stored(cert: Certificate) -> AnchorResult:
        return AnchorResult(
            certificate_id=cert.id,
            tx_hash=cert.blockchain_tx_hash,
            explorer_url=cert.blockchain_explorer_url,
            network=cert.blockchain_network,
            already_certified=True,
        )

    async def _record_pending(self, certificate_id: uuid.UUID, tx_hash: str | None) -> None:
        cert = await self._load(certificate_id, lock=True)
        cert.blockchain_pending_tx_hash = tx_hash
        await self.db.commit()

    def _remaining(self, deadline: float) -> float:
        return max(deadline - asyncio.get_running_loop().time(), 0.0)

    async def anchor(self, certificate_id: uuid.UUID) -> AnchorResult:
        """Submit the certificate fingerprint once; repeated calls return the stored hash.

        The submitted hash is stored before waiting for its receipt, so an
        attempt that times out between submit and confirm is resumed by the
        next attempt instead of being broadcast a second time.
        """
        cert = await self._load(certificate_id, lock=True)
        if cert.is_blockchain_certified:
            return self._stored(cert)
        if cert.status == CertificateStatus.REVOKED:
            raise ValidationError("Revoked certificates cannot be anchored")
        if not self.chain.enabled:
            raise AnchorError("Blockchain anchoring is not configured")

        fingerprint = certificate_fingerprint(cert)
        if fingerprint != cert.content_hash:
            logger.error("anchor.hash_mismatch", certificate_id=str(certificate_id))
            raise AnchorError(
                "Certificate content does not match its stored hash",
                {"certificate_id": str(certificate_id)},
            )
        try:
            await sign_as_platform(cert, self.chain)
        except ChainError as exc:
            raise AnchorError(str(exc), {"certificate_id": str(certificate_id)}) from exc
        payload = anchor_payload(cert, fingerprint)
        pending = cert.blockchain_pending_tx_hash

        # No row lock may be held across the network round-trip
        await self.db.commit()

        deadline = asyncio.get_running_loop().time() + self.timeout
        tx_hash = pending
        try:
            if tx_hash is None:
                tx_hash = await asyncio.wait_for(self.chain.submit(payload), timeout=self.timeout)
                await self._record_pending(certificate_id, tx_hash)
            else:
                logger.info("anchor.resume_pending", certificate_id=str(certificate_id), tx_hash=tx_hash)
            receipt = await asyncio.wait_for(
                self.chain.confirm(tx_hash), timeout=self._remaining(deadline)
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "anchor.timeout",
                certificate_id=str(certificate_id),
                timeout=self.timeout,
                pending_tx_hash=tx_hash,
            )
            raise AnchorError(
                f"Blockchain anchoring timed out after {self.timeout:g}s",
                {"certificate_id": str(certificate_id), "pending_tx_hash": tx_hash},
            ) from exc
        except ChainReverted as exc:
            logger.warning("anchor.reverted", certificate_id=str(certificate_id), tx_hash=tx_hash)
            await self._record_pending(certificate_id, None)
            raise AnchorError(str(exc), {"certificate_id": str(certificate_id)}) from exc
        except ChainError as exc:
            logger.warning("anchor.chain_error", certificate_id=str(certificate_id), error=str(exc))
            raise AnchorError(str(exc), {"certificate_id": str(certificate_id)}) from exc

        cert = await self._load(certificate_id, lock=True)
        if cert.is_blockchain_certified:
            # Another worker attached its hash while we were submitting
            cert.blockchain_pending_tx_hash = None
            await self.db.commit()
            logger.warning(
                "anchor.duplicate_submission",
                certificate_id=str(certificate_id),
                kept=cert.blockchain_tx_hash,
                discarded=tx_hash,
            )
            return self._stored(cert)

        cert.is_blockchain_certified = True
        cert.blockchain_tx_hash = tx_hash
        cert.blockchain_pending_tx_hash = None
        cert.blockchain_network = self.chain.network
        cert.blockchain_explorer_url = self.chain.explorer_url(tx_hash)
        cert.blockchain_certified_at = utcnow()
        await self.db.commit()
        logger.info(
            "anchor.certified",
            certificate_id=str(certificate_id),
            tx_hash=tx_hash,
            network=self.chain.network,
        )
        return AnchorResult(
            certificate_id=cert.id,
            tx_hash=tx_hash,
            explorer_url=cert.blockchain_explorer_url,
            network=self.chain.network,
            block_number=receipt.block_number,
        )

    async def anchor_best_effort(self, certificate_id: uuid.UUID) -> dict[str, Any]:
        """Anchor, reporting failure as a warning instead of raising."""
        try:
            result = await self.anchor(certificate_id)
        except LedgerError as exc:
            await self.db.rollback()
            return {"certified": False, "warning": exc.message}
        except Exception as exc:  # noqa: BLE001
            await self.db.rollback()
            logger.warning("anchor.unexpected_error", certificate_id=str(certificate_id), error=str(exc))
            return {"certified": False, "warning": "Blockchain certification could not be completed"}
        data = asdict(result)
        data["certificate_id"] = str(result.certificate_id)
        return {"certified": True, **data}

    async def verify_on_chain(self, certificate_id: uuid.UUID) -> dict[str, Any]:
        """Read the anchored payload back and compare it with the certificate."""
        cert = await self._load(certificate_id)
        if not cert.is_blockchain_certified or not cert.blockchain_tx_hash:
            raise ValidationError("Certificate has not been anchored on a blockchain")
        try:
            decoded = await asyncio.wait_for(
                self.chain.decode(cert.blockchain_tx_hash), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise AnchorError("Blockchain lookup timed out") from exc
        except ChainError as exc:
            raise AnchorError(str(exc)) from exc

        current = certificate_fingerprint(cert)
        on_chain_hash = decoded.get("hash")
        return {
            "certificate_id": str(cert.id),
            "tx_hash": cert.blockchain_tx_hash,
            "network": cert.blockchain_network,
            "explorer_url": cert.blockchain_explorer_url,
            "on_chain_hash": on_chain_hash,
            "stored_hash": cert.content_hash,
            "matches": (
                on_chain_hash == cert.content_hash == current
                and decoded.get("certificate_id") == str(cert.id)
            ),
            "anchored_at": decoded.get("timestamp"),
        }

    async def status(self) -> dict[str, Any]:
        network = get_network(self.chain.network)
        balance = None
        if self.chain.enabled:
            try:
                balance = str(await asyncio.wait_for(self.chain.balance(), timeout=self.timeout))
            except (ChainError, asyncio.TimeoutError) as exc:
                logger.warning("anchor.balance_unavailable", error=str(exc))
        return {
            "enabled": self.chain.enabled,
            "network": network.key,
            "network_name": network.name,
            "chain_id": network.chain_id,
            "is_testnet": network.is_testnet,
            "explorer": network.explorer,
            "address": self.chain.address,
            "balance": balance,
        }

    async def unanchored(self, limit: int = 50) -> list[uuid.UUID]:
        """Active certificates still waiting for a chain anchor, oldest first."""
        stmt = (
            select(Certificate.id)
            .where(
                Certificate.is_blockchain_certified.is_(False),
                Certificate.status == CertificateStatus.ACTIVE,
            )
            .order_by(Certificate.issued_at.asc())
            .limit(limit)
        )
        if self.tenant_id is not None:
            stmt = stmt.where(Certificate.tenant_id == self.tenant_id)
        return list((await self.db.execute(stmt)).scalars().all())
