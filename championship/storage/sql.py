"""SQLAlchemy-backed ChallengeStore and Custody.

Store and custody share one session per transaction, so proof inserts, pool
updates, and vault movements commit or roll back together.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from championship.arithmetic import checked_add
from championship.errors import (
    AlreadyExistsError,
    InsufficientFundsError,
    NotFoundError,
    PaymentMismatchError,
)
from championship.models import (
    AccountBetTotal,
    Agent,
    BetRecord,
    Challenge,
    ChallengeMetadata,
    ClaimProof,
    EnrollmentProof,
    PayoutRecord,
    VoteProof,
)
from championship.storage.base import ChallengeStore

logger = logging.getLogger(__name__)

Base = declarative_base()


class AmountType(TypeDecorator):
    """Unsigned 64-bit integer stored as a decimal string.

    SQLite integers are signed 64-bit, so u64 values above 2**63 would not fit.
    """

    impl = String(20)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Tables
# ============================================================================


class ChallengeRow(Base):
    """Challenge header record."""

    __tablename__ = "challenges"

    id = Column(String(128), primary_key=True)
    creator = Column(String(128), nullable=False, index=True)
    platform = Column(String(128), nullable=False)
    entry_fee = Column(AmountType, nullable=False)
    enroll_end = Column(BigInteger, nullable=False)
    compete_end = Column(BigInteger, nullable=False)
    judge_end = Column(BigInteger, nullable=False)
    total_entry_pool = Column(AmountType, nullable=False, default=0)
    total_bet_pool = Column(AmountType, nullable=False, default=0)
    finalized = Column(Boolean, nullable=False, default=False)
    cancelled = Column(Boolean, nullable=False, default=False)
    winner_index = Column(Integer, nullable=True)

    # Commitment metadata
    title = Column(String(256), nullable=True)
    description = Column(Text, nullable=True)
    challenge_hash = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "NOT (finalized AND cancelled)",
            name="single_terminal_state",
        ),
        CheckConstraint(
            "enroll_end < compete_end AND compete_end < judge_end",
            name="ordered_phase_boundaries",
        ),
    )

    def __repr__(self) -> str:
        return f"<Challenge {self.id} fee={self.entry_fee}>"


class AgentRow(Base):
    """Agent keyed by its fixed position within a challenge."""

    __tablename__ = "agents"

    challenge_id = Column(
        String(128),
        ForeignKey("challenges.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position = Column(Integer, primary_key=True)
    agent_id = Column(String(128), nullable=False)
    owner = Column(String(128), nullable=False)
    vote_count = Column(AmountType, nullable=False, default=0)
    bet_pool = Column(AmountType, nullable=False, default=0)
    withdrawn = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("challenge_id", "agent_id", name="uq_agent_per_challenge"),
    )

    def __repr__(self) -> str:
        return f"<Agent {self.agent_id}@{self.position} in {self.challenge_id}>"


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    challenge_id = Column(String(128), primary_key=True)
    account = Column(String(128), primary_key=True)
    agent_id = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class VoteRow(Base):
    __tablename__ = "votes"

    challenge_id = Column(String(128), primary_key=True)
    account = Column(String(128), primary_key=True)
    agent_id = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ClaimRow(Base):
    __tablename__ = "claims"

    challenge_id = Column(String(128), primary_key=True)
    account = Column(String(128), primary_key=True)
    amount = Column(AmountType, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class BetRow(Base):
    """Cumulative wager per (challenge, account, agent)."""

    __tablename__ = "bets"

    challenge_id = Column(String(128), primary_key=True)
    account = Column(String(128), primary_key=True)
    agent_id = Column(String(128), primary_key=True)
    amount = Column(AmountType, nullable=False, default=0)


class AccountBetTotalRow(Base):
    __tablename__ = "account_bet_totals"

    challenge_id = Column(String(128), primary_key=True)
    account = Column(String(128), primary_key=True)
    amount = Column(AmountType, nullable=False, default=0)


class PayoutRow(Base):
    """Audit trail for every transfer out of a vault."""

    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenge_id = Column(String(128), nullable=False, index=True)
    recipient = Column(String(128), nullable=False, index=True)
    amount = Column(AmountType, nullable=False)
    payout_type = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "payout_type IN ('entry_prize', 'bet_winnings', 'creator_share', "
            "'platform_fee', 'cancellation_refund', 'withdrawal_refund', "
            "'withdrawal_fee', 'dust_sweep')",
            name="valid_payout_type",
        ),
        Index("idx_payouts_challenge_id_id", "challenge_id", "id"),
    )


class VaultRow(Base):
    __tablename__ = "vaults"

    challenge_id = Column(String(128), primary_key=True)
    balance = Column(AmountType, nullable=False, default=0)


class WalletRow(Base):
    __tablename__ = "wallets"

    account = Column(String(128), primary_key=True)
    balance = Column(AmountType, nullable=False, default=0)


# ============================================================================
# Engine helpers
# ============================================================================


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _use_immediate_transactions(engine)
        return engine
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def _use_immediate_transactions(engine: Engine) -> None:
    """Take SQLite's write lock at BEGIN so concurrent writers queue up."""

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# ============================================================================
# Store
# ============================================================================


class SqlChallengeStore(ChallengeStore):
    """ChallengeStore over SQLAlchemy sessions."""

    def __init__(self, engine: Engine, create_tables: bool = True):
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )
        self._local = threading.local()
        # A single shared connection cannot hold two transactions at once
        self._shared_connection = isinstance(engine.pool, StaticPool)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        if create_tables:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SqlChallengeStore":
        return cls(create_store_engine(database_url))

    def _lock_for(self, challenge_id: str | None) -> threading.RLock | None:
        if challenge_id is None and not self._shared_connection:
            return None
        key = "*" if self._shared_connection else challenge_id
        with self._locks_guard:
            return self._locks.setdefault(key, threading.RLock())

    @contextmanager
    def transaction(self, challenge_id: str | None = None) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return

        lock = self._lock_for(challenge_id)
        with lock if lock is not None else nullcontext():
            session = self._session_factory()
            self._local.session = session
            try:
                if challenge_id is not None:
                    # Row lock on servers that support it; SQLite relies on BEGIN IMMEDIATE
                    session.get(ChallengeRow, challenge_id, with_for_update=True)
                yield
                session.commit()
            except BaseException:
                session.rollback()
                logger.debug("Rolled back SQL transaction")
                raise
            finally:
                session.close()
                self._local.session = None

    @contextmanager
    def session_scope(self, write: bool = False) -> Iterator[Session]:
        """Yield the active transaction's session.

        Without an active transaction, writes get their own committed
        transaction and reads get a short-lived session.
        """
        active = getattr(self._local, "session", None)
        if active is not None:
            yield active
            return

        if write:
            with self.transaction():
                yield self._local.session
            return

        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def _flush_insert(self, session: Session, row, message: str, challenge_id: str) -> None:
        session.add(row)
        try:
            session.flush()
        except IntegrityError as e:
            raise AlreadyExistsError(message, challenge_id) from e

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    def _to_challenge(self, session: Session, row: ChallengeRow) -> Challenge:
        agent_rows = session.scalars(
            select(AgentRow)
            .where(AgentRow.challenge_id == row.id)
            .order_by(AgentRow.position)
        ).all()
        metadata = None
        if row.title or row.description or row.challenge_hash:
            metadata = ChallengeMetadata(
                title=row.title or "",
                description=row.description or "",
                challenge_hash=row.challenge_hash,
            )
        return Challenge(
            id=row.id,
            creator=row.creator,
            platform=row.platform,
            entry_fee=row.entry_fee,
            enroll_end=row.enroll_end,
            compete_end=row.compete_end,
            judge_end=row.judge_end,
            total_entry_pool=row.total_entry_pool,
            total_bet_pool=row.total_bet_pool,
            finalized=row.finalized,
            cancelled=row.cancelled,
            winner_index=row.winner_index,
            agents=[
                Agent(
                    agent_id=a.agent_id,
                    owner=a.owner,
                    vote_count=a.vote_count,
                    bet_pool=a.bet_pool,
                    withdrawn=a.withdrawn,
                )
                for a in agent_rows
            ],
            metadata=metadata,
            created_at=row.created_at,
        )

    def get_challenge(self, challenge_id: str) -> Challenge | None:
        with self.session_scope() as session:
            row = session.get(ChallengeRow, challenge_id)
            return self._to_challenge(session, row) if row else None

    def insert_challenge(self, challenge: Challenge) -> None:
        with self.session_scope(write=True) as session:
            if session.get(ChallengeRow, challenge.id) is not None:
                raise AlreadyExistsError(
                    f"Challenge {challenge.id} already exists", challenge.id
                )
            meta = challenge.metadata or ChallengeMetadata()
            row = ChallengeRow(
                id=challenge.id,
                creator=challenge.creator,
                platform=challenge.platform,
                entry_fee=challenge.entry_fee,
                enroll_end=challenge.enroll_end,
                compete_end=challenge.compete_end,
                judge_end=challenge.judge_end,
                total_entry_pool=challenge.total_entry_pool,
                total_bet_pool=challenge.total_bet_pool,
                finalized=challenge.finalized,
                cancelled=challenge.cancelled,
                winner_index=challenge.winner_index,
                title=meta.title or None,
                description=meta.description or None,
                challenge_hash=meta.challenge_hash,
                created_at=challenge.created_at,
            )
            self._flush_insert(
                session, row, f"Challenge {challenge.id} already exists", challenge.id
            )

    def update_challenge(self, challenge: Challenge) -> None:
        with self.session_scope(write=True) as session:
            row = session.get(ChallengeRow, challenge.id)
            if row is None:
                raise NotFoundError(f"Challenge {challenge.id} not found", challenge.id)

            row.total_entry_pool = challenge.total_entry_pool
            row.total_bet_pool = challenge.total_bet_pool
            row.finalized = challenge.finalized
            row.cancelled = challenge.cancelled
            row.winner_index = challenge.winner_index

            for position, agent in enumerate(challenge.agents):
                agent_row = session.get(AgentRow, (challenge.id, position))
                if agent_row is None:
                    agent_row = AgentRow(challenge_id=challenge.id, position=position)
                    session.add(agent_row)
                agent_row.agent_id = agent.agent_id
                agent_row.owner = agent.owner
                agent_row.vote_count = agent.vote_count
                agent_row.bet_pool = agent.bet_pool
                agent_row.withdrawn = agent.withdrawn

            try:
                session.flush()
            except IntegrityError as e:
                raise AlreadyExistsError(
                    f"Agent id collision in {challenge.id}", challenge.id
                ) from e

    def list_challenges(self) -> list[Challenge]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(ChallengeRow).order_by(ChallengeRow.created_at)
            ).all()
            return [self._to_challenge(session, row) for row in rows]

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def get_enrollment(self, challenge_id: str, account: str) -> EnrollmentProof | None:
        with self.session_scope() as session:
            row = session.get(EnrollmentRow, (challenge_id, account))
            if row is None:
                return None
            return EnrollmentProof(
                challenge_id=row.challenge_id,
                account=row.account,
                agent_id=row.agent_id,
                created_at=row.created_at,
            )

    def insert_enrollment(self, proof: EnrollmentProof) -> None:
        message = f"{proof.account} already enrolled in {proof.challenge_id}"
        with self.session_scope(write=True) as session:
            if session.get(EnrollmentRow, (proof.challenge_id, proof.account)):
                raise AlreadyExistsError(message, proof.challenge_id)
            row = EnrollmentRow(
                challenge_id=proof.challenge_id,
                account=proof.account,
                agent_id=proof.agent_id,
                created_at=proof.created_at,
            )
            self._flush_insert(session, row, message, proof.challenge_id)

    def list_enrollments(self, challenge_id: str) -> list[EnrollmentProof]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(EnrollmentRow).where(EnrollmentRow.challenge_id == challenge_id)
            ).all()
            return [
                EnrollmentProof(
                    challenge_id=r.challenge_id,
                    account=r.account,
                    agent_id=r.agent_id,
                    created_at=r.created_at,
                )
                for r in rows
            ]

    def get_vote(self, challenge_id: str, account: str) -> VoteProof | None:
        with self.session_scope() as session:
            row = session.get(VoteRow, (challenge_id, account))
            if row is None:
                return None
            return VoteProof(
                challenge_id=row.challenge_id,
                account=row.account,
                agent_id=row.agent_id,
                created_at=row.created_at,
            )

    def insert_vote(self, proof: VoteProof) -> None:
        message = f"{proof.account} already voted in {proof.challenge_id}"
        with self.session_scope(write=True) as session:
            if session.get(VoteRow, (proof.challenge_id, proof.account)):
                raise AlreadyExistsError(message, proof.challenge_id)
            row = VoteRow(
                challenge_id=proof.challenge_id,
                account=proof.account,
                agent_id=proof.agent_id,
                created_at=proof.created_at,
            )
            self._flush_insert(session, row, message, proof.challenge_id)

    def get_claim(self, challenge_id: str, account: str) -> ClaimProof | None:
        with self.session_scope() as session:
            row = session.get(ClaimRow, (challenge_id, account))
            if row is None:
                return None
            return ClaimProof(
                challenge_id=row.challenge_id,
                account=row.account,
                amount=row.amount,
                created_at=row.created_at,
            )

    def insert_claim(self, proof: ClaimProof) -> None:
        message = f"{proof.account} already claimed from {proof.challenge_id}"
        with self.session_scope(write=True) as session:
            if session.get(ClaimRow, (proof.challenge_id, proof.account)):
                raise AlreadyExistsError(message, proof.challenge_id)
            row = ClaimRow(
                challenge_id=proof.challenge_id,
                account=proof.account,
                amount=proof.amount,
                created_at=proof.created_at,
            )
            self._flush_insert(session, row, message, proof.challenge_id)

    # ------------------------------------------------------------------
    # Wagers
    # ------------------------------------------------------------------

    def get_bet(self, challenge_id: str, account: str, agent_id: str) -> BetRecord | None:
        with self.session_scope() as session:
            row = session.get(BetRow, (challenge_id, account, agent_id))
            if row is None:
                return None
            return BetRecord(
                challenge_id=row.challenge_id,
                account=row.account,
                agent_id=row.agent_id,
                amount=row.amount,
            )

    def save_bet(self, record: BetRecord) -> None:
        with self.session_scope(write=True) as session:
            key = (record.challenge_id, record.account, record.agent_id)
            row = session.get(BetRow, key)
            if row is None:
                row = BetRow(
                    challenge_id=record.challenge_id,
                    account=record.account,
                    agent_id=record.agent_id,
                )
                session.add(row)
            row.amount = record.amount
            session.flush()

    def list_bets(self, challenge_id: str) -> list[BetRecord]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(BetRow).where(BetRow.challenge_id == challenge_id)
            ).all()
            return [
                BetRecord(
                    challenge_id=r.challenge_id,
                    account=r.account,
                    agent_id=r.agent_id,
                    amount=r.amount,
                )
                for r in rows
            ]

    def get_account_bet_total(self, challenge_id: str, account: str) -> AccountBetTotal | None:
        with self.session_scope() as session:
            row = session.get(AccountBetTotalRow, (challenge_id, account))
            if row is None:
                return None
            return AccountBetTotal(
                challenge_id=row.challenge_id, account=row.account, amount=row.amount
            )

    def save_account_bet_total(self, record: AccountBetTotal) -> None:
        with self.session_scope(write=True) as session:
            row = session.get(AccountBetTotalRow, (record.challenge_id, record.account))
            if row is None:
                row = AccountBetTotalRow(
                    challenge_id=record.challenge_id, account=record.account
                )
                session.add(row)
            row.amount = record.amount
            session.flush()

    def list_account_bet_totals(self, challenge_id: str) -> list[AccountBetTotal]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(AccountBetTotalRow).where(
                    AccountBetTotalRow.challenge_id == challenge_id
                )
            ).all()
            return [
                AccountBetTotal(
                    challenge_id=r.challenge_id, account=r.account, amount=r.amount
                )
                for r in rows
            ]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_payout(self, record: PayoutRecord) -> None:
        with self.session_scope(write=True) as session:
            session.add(
                PayoutRow(
                    challenge_id=record.challenge_id,
                    recipient=record.recipient,
                    amount=record.amount,
                    payout_type=record.payout_type,
                    created_at=record.created_at,
                )
            )
            session.flush()

    def list_payouts(self, challenge_id: str) -> list[PayoutRecord]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(PayoutRow)
                .where(PayoutRow.challenge_id == challenge_id)
                .order_by(PayoutRow.id)
            ).all()
            return [
                PayoutRecord(
                    challenge_id=r.challenge_id,
                    recipient=r.recipient,
                    amount=r.amount,
                    payout_type=r.payout_type,
                    created_at=r.created_at,
                )
                for r in rows
            ]


# ============================================================================
# Custody
# ============================================================================


class SqlCustody:
    """Vault and wallet balances in the store's database.

    Writes go through the store's active session so they share its transaction.
    """

    def __init__(self, store: SqlChallengeStore):
        self.store = store

    def credit(self, challenge_id: str, source: str, amount: int) -> None:
        if amount <= 0:
            raise PaymentMismatchError(
                f"Inbound transfer must be positive, got {amount}", challenge_id
            )
        with self.store.session_scope(write=True) as session:
            vault = session.get(VaultRow, challenge_id, with_for_update=True)
            if vault is None:
                vault = VaultRow(challenge_id=challenge_id, balance=0)
                session.add(vault)
            vault.balance = checked_add(vault.balance or 0, amount)
            session.flush()
        logger.debug(f"Vault {challenge_id} credited {amount} from {source}")

    def debit(self, challenge_id: str, destination: str, amount: int) -> None:
        if amount <= 0:
            return
        with self.store.session_scope(write=True) as session:
            vault = session.get(VaultRow, challenge_id, with_for_update=True)
            balance = vault.balance if vault is not None else 0
            if balance < amount:
                logger.error(
                    f"Vault {challenge_id} short: balance={balance} required={amount}"
                )
                raise InsufficientFundsError(
                    f"Vault balance {balance} below required {amount}", challenge_id
                )
            wallet = session.get(WalletRow, destination, with_for_update=True)
            if wallet is None:
                wallet = WalletRow(account=destination, balance=0)
                session.add(wallet)
            wallet.balance = checked_add(wallet.balance or 0, amount)
            vault.balance = balance - amount
            session.flush()
        logger.debug(f"Vault {challenge_id} paid {amount} to {destination}")

    def vault_balance(self, challenge_id: str) -> int:
        with self.store.session_scope() as session:
            vault = session.get(VaultRow, challenge_id)
            return vault.balance if vault is not None else 0

    def balance_of(self, account: str) -> int:
        with self.store.session_scope() as session:
            wallet = session.get(WalletRow, account)
            return wallet.balance if wallet is not None else 0

    def fund(self, account: str, amount: int) -> None:
        """Seed an external wallet balance."""
        if amount <= 0:
            raise PaymentMismatchError(f"Funding must be positive, got {amount}")
        with self.store.session_scope(write=True) as session:
            wallet = session.get(WalletRow, account, with_for_update=True)
            if wallet is None:
                wallet = WalletRow(account=account, balance=0)
                session.add(wallet)
            wallet.balance = checked_add(wallet.balance or 0, amount)
            session.flush()
        logger.info(f"Funded {account} with {amount}")
