"""Repository for relayer ledger operations."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bridgerelay.ledger.models import (
    BridgeAttempt,
    BridgeStatus,
    DepositAddress,
    SeenFingerprint,
)


class RelayerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Deposit address operations
    async def get_deposit_address_by_owner(self, owner_id: str) -> Optional[DepositAddress]:
        """Get the deposit address record of an owner."""
        stmt = select(DepositAddress).where(DepositAddress.owner_id == owner_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_deposit_address_record(self, address: str) -> Optional[DepositAddress]:
        """Get deposit address record by address string."""
        stmt = select(DepositAddress).where(DepositAddress.address == address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_deposit_address(
        self,
        owner_id: str,
        address: str,
        encrypted_key: str,
        created_at: datetime,
    ) -> DepositAddress:
        """Insert a deposit address record (flushes, caller commits)."""
        record = DepositAddress(
            owner_id=owner_id,
            address=address,
            encrypted_key=encrypted_key,
            created_at=created_at,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_all_deposit_addresses(self) -> list[str]:
        """Get every tracked deposit address in creation order."""
        stmt = select(DepositAddress.address).order_by(DepositAddress.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Fingerprint operations
    async def has_fingerprint(self, fingerprint: str) -> bool:
        stmt = select(SeenFingerprint.id).where(SeenFingerprint.fingerprint == fingerprint)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def add_fingerprint(self, fingerprint: str, address: str, balance: int) -> SeenFingerprint:
        """Insert a fingerprint. Raises IntegrityError if it already exists."""
        record = SeenFingerprint(fingerprint=fingerprint, address=address, balance=str(balance))
        self.session.add(record)
        await self.session.flush()
        return record

    # Bridge attempt operations
    async def create_bridge_attempt(
        self, deposit_address: str, owner_id: str, amount: int
    ) -> BridgeAttempt:
        """Record a new bridge attempt in pending state."""
        attempt = BridgeAttempt(
            deposit_address=deposit_address,
            owner_id=owner_id,
            amount=str(amount),
            status=BridgeStatus.PENDING,
        )
        self.session.add(attempt)
        await self.session.flush()
        return attempt

    async def get_bridge_attempt(self, attempt_id: int) -> Optional[BridgeAttempt]:
        stmt = select(BridgeAttempt).where(BridgeAttempt.id == attempt_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_bridge_attempt_funded(
        self, attempt_id: int, fund_tx_hash: str
    ) -> BridgeAttempt:
        """Record that gas funding for an attempt confirmed on-chain."""
        attempt = await self.get_bridge_attempt(attempt_id)
        if attempt is None:
            raise ValueError(f"Bridge attempt {attempt_id} not found")

        attempt.status = BridgeStatus.FUNDED
        attempt.fund_tx_hash = fund_tx_hash
        await self.session.flush()
        return attempt

    async def complete_bridge_attempt(
        self,
        attempt_id: int,
        fund_tx_hash: str,
        send_tx_hash: str,
        native_fee: int,
        fee_source: str,
    ) -> BridgeAttempt:
        """Mark a bridge attempt as completed."""
        attempt = await self.get_bridge_attempt(attempt_id)
        if attempt is None:
            raise ValueError(f"Bridge attempt {attempt_id} not found")

        attempt.status = BridgeStatus.COMPLETED
        attempt.fund_tx_hash = fund_tx_hash
        attempt.send_tx_hash = send_tx_hash
        attempt.native_fee = str(native_fee)
        attempt.fee_source = fee_source
        attempt.completed_at = datetime.now(timezone.utc)
        await self.session.flush()
        return attempt

    async def fail_bridge_attempt(
        self,
        attempt_id: int,
        step: str,
        error_message: str,
        fund_tx_hash: Optional[str] = None,
    ) -> BridgeAttempt:
        """Mark a bridge attempt as failed at a given step."""
        attempt = await self.get_bridge_attempt(attempt_id)
        if attempt is None:
            raise ValueError(f"Bridge attempt {attempt_id} not found")

        attempt.status = BridgeStatus.FAILED
        attempt.failed_step = step
        attempt.error_message = error_message[:2000]
        attempt.fund_tx_hash = fund_tx_hash
        attempt.completed_at = datetime.now(timezone.utc)
        await self.session.flush()
        return attempt

    async def get_bridge_attempts(
        self,
        status: Optional[BridgeStatus] = None,
        deposit_address: Optional[str] = None,
        limit: int = 100,
    ) -> list[BridgeAttempt]:
        """List bridge attempts, newest first."""
        stmt = select(BridgeAttempt)
        if status is not None:
            stmt = stmt.where(BridgeAttempt.status == status)
        if deposit_address is not None:
            stmt = stmt.where(BridgeAttempt.deposit_address == deposit_address)
        stmt = stmt.order_by(BridgeAttempt.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
