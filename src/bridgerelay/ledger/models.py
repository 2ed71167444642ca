"""SQLAlchemy models for the relayer ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class BridgeStatus(str, Enum):
    """Status of a bridge attempt."""

    PENDING = "pending"        # Deposit observed, nothing sent yet
    FUNDED = "funded"          # Gas delivered to the deposit address
    COMPLETED = "completed"    # Cross-chain send confirmed on the source chain
    FAILED = "failed"          # Failed at any step


class DepositAddress(Base):
    """Custodial deposit address, one per owner.

    The key column holds a Fernet token when MASTER_KEY is configured.
    """

    __tablename__ = "deposit_addresses"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(66), unique=True, nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False, index=True)
    encrypted_key: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SeenFingerprint(Base):
    """Deposit fingerprints already handed to the bridge executor.

    Only used when fingerprints are persisted across restarts.
    """

    __tablename__ = "seen_fingerprints"
    __table_args__ = (Index("ix_seen_fingerprints_fp", "fingerprint", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    balance: Mapped[str] = mapped_column(String(80), nullable=False)  # uint256 as decimal string
    seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class BridgeAttempt(Base):
    """Record of one bridge execution, kept for manual recovery."""

    __tablename__ = "bridge_attempts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    deposit_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    owner_id: Mapped[str] = mapped_column(String(66), nullable=False)
    amount: Mapped[str] = mapped_column(String(80), nullable=False)  # uint256 as decimal string
    status: Mapped[BridgeStatus] = mapped_column(
        String(20), default=BridgeStatus.PENDING, nullable=False
    )
    failed_step: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fund_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    send_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    native_fee: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    fee_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # quote, fallback
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
