"""Relational store on SQLAlchemy Core.

Works against PostgreSQL and SQLite URLs. Amounts are stored as
NUMERIC(78, 0) (enough digits for any uint256); SQLite has no exact
arbitrary-precision numeric, so there they are stored as decimal strings.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
import structlog
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from dexengine.errors import PairExists
from dexengine.models.records import PoolRecord, Snapshot
from dexengine.models.transaction import (
    PendingTransaction,
    TransactionState,
    TransactionType,
)

logger = structlog.get_logger()


class Uint256(TypeDecorator):
    """Exact unsigned integer column."""

    impl = sa.Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[no-untyped-def]
        if dialect.name == "sqlite":
            return dialect.type_descriptor(sa.String(78))
        return dialect.type_descriptor(sa.Numeric(78, 0))

    def process_bind_param(self, value, dialect):  # type: ignore[no-untyped-def]
        if value is None:
            return None
        return str(value) if dialect.name == "sqlite" else Decimal(value)

    def process_result_value(self, value, dialect):  # type: ignore[no-untyped-def]
        if value is None:
            return None
        return int(value)


class UtcDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps, also on backends that drop the offset."""

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # type: ignore[no-untyped-def]
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        return value.replace(tzinfo=None) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):  # type: ignore[no-untyped-def]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


metadata = sa.MetaData()

pools = sa.Table(
    "pools",
    metadata,
    sa.Column("pool_id", sa.String(66), primary_key=True),
    sa.Column("token_a", sa.String(255), nullable=False),
    sa.Column("token_b", sa.String(255), nullable=False),
    sa.Column("pair_key", sa.String(512), nullable=False),
    sa.Column("fee_bps", sa.Integer(), nullable=False),
    sa.Column("reserve_a", Uint256(), nullable=False),
    sa.Column("reserve_b", Uint256(), nullable=False),
    sa.Column("total_shares", Uint256(), nullable=False),
    sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("created_at", UtcDateTime(), nullable=True),
    sa.UniqueConstraint("pair_key", name="uq_pools_pair_key"),
)

lp_positions = sa.Table(
    "lp_positions",
    metadata,
    sa.Column("pool_id", sa.String(66), sa.ForeignKey("pools.pool_id"), primary_key=True),
    sa.Column("provider", sa.String(255), primary_key=True),
    sa.Column("shares", Uint256(), nullable=False),
    sa.Index("ix_lp_positions_provider", "provider"),
)

pool_snapshots = sa.Table(
    "pool_snapshots",
    metadata,
    sa.Column("pool_id", sa.String(66), primary_key=True),
    sa.Column("timestamp", UtcDateTime(), primary_key=True),
    sa.Column("reserve_a", Uint256(), nullable=False),
    sa.Column("reserve_b", Uint256(), nullable=False),
)

pending_transactions = sa.Table(
    "pending_transactions",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("type", sa.String(32), nullable=False),
    sa.Column("user_address", sa.String(255), nullable=False),
    sa.Column("pool_id", sa.String(66), nullable=False),
    sa.Column("params", sa.JSON(), nullable=False),
    sa.Column("state", sa.String(32), nullable=False),
    sa.Column("created_at", UtcDateTime(), nullable=False),
    sa.Column("tx1_hash", sa.String(255)),
    sa.Column("tx2_hash", sa.String(255)),
    sa.Column("recovery_tx_hash", sa.String(255)),
    sa.Column("error_message", sa.Text()),
    sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("tx1_completed_at", UtcDateTime()),
    sa.Column("tx2_completed_at", UtcDateTime()),
    sa.Column("tx2_failed_at", UtcDateTime()),
    sa.Column("recovered_at", UtcDateTime()),
    sa.Column("result", sa.JSON(), nullable=False),
    sa.Index("ix_pending_transactions_state", "state"),
)

protocol_fee_totals = sa.Table(
    "protocol_fees",
    metadata,
    sa.Column("token", sa.String(255), primary_key=True),
    sa.Column("amount", Uint256(), nullable=False),
)


def create_store_engine(database_url: str) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""
    url = sa.make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        return sa.create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.get_backend_name() == "sqlite":
        return sa.create_engine(database_url, connect_args={"check_same_thread": False})
    return sa.create_engine(database_url, pool_pre_ping=True)


class SqlStore:
    """SQLAlchemy Core implementation of the Store protocol.

    A unit of work binds one transaction to the calling thread; every method
    called inside it reuses that connection. Pool reads inside a unit of work
    take a row lock (SELECT ... FOR UPDATE) where the backend supports it.
    """

    def __init__(self, engine: Engine | str, create_tables: bool = True) -> None:
        self.engine = create_store_engine(engine) if isinstance(engine, str) else engine
        self._local = threading.local()
        # SQLite serializes writers anyway; doing it here avoids "database is locked"
        self._sqlite_lock = threading.RLock() if self.engine.dialect.name == "sqlite" else None
        if create_tables:
            metadata.create_all(self.engine)

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        with self._serialized(), self.engine.begin() as conn:
            self._local.conn = conn
            try:
                yield
            finally:
                self._local.conn = None

    @contextmanager
    def _serialized(self) -> Iterator[None]:
        if self._sqlite_lock is None:
            yield
            return
        with self._sqlite_lock:
            yield

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return
        with self._serialized(), self.engine.begin() as conn:
            yield conn

    @property
    def _in_unit_of_work(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    # --- Pools ---------------------------------------------------------------

    def load_pools(self) -> list[PoolRecord]:
        with self._connection() as conn:
            rows = conn.execute(sa.select(pools).order_by(pools.c.pair_key)).mappings()
            return [_pool_from_row(row) for row in rows]

    def get_pool(self, pool_id: str) -> PoolRecord | None:
        query = sa.select(pools).where(pools.c.pool_id == pool_id)
        if self._in_unit_of_work:
            query = query.with_for_update()
        with self._connection() as conn:
            row = conn.execute(query).mappings().first()
        return _pool_from_row(row) if row is not None else None

    def insert_pool(self, record: PoolRecord) -> None:
        existing = sa.select(pools.c.pool_id).where(
            (pools.c.pair_key == record.pair_key) | (pools.c.pool_id == record.pool_id)
        )
        try:
            with self._connection() as conn:
                if conn.execute(existing).first() is not None:
                    raise PairExists(f"Pool already exists for {record.pair_key}")
                conn.execute(sa.insert(pools).values(**_pool_values(record)))
        except IntegrityError as e:
            # Lost a race against another process inserting the same pair
            raise PairExists(f"Pool already exists for {record.pair_key}") from e

    def update_pool(self, record: PoolRecord) -> None:
        values = _pool_values(record)
        del values["pool_id"]
        with self._connection() as conn:
            conn.execute(sa.update(pools).where(pools.c.pool_id == record.pool_id).values(**values))

    # --- Positions -----------------------------------------------------------

    def get_position(self, pool_id: str, provider: str) -> int:
        query = sa.select(lp_positions.c.shares).where(
            lp_positions.c.pool_id == pool_id, lp_positions.c.provider == provider
        )
        with self._connection() as conn:
            shares = conn.execute(query).scalar()
        return shares or 0

    def set_position(self, pool_id: str, provider: str, shares: int) -> None:
        where = (lp_positions.c.pool_id == pool_id) & (lp_positions.c.provider == provider)
        with self._connection() as conn:
            if shares == 0:
                conn.execute(sa.delete(lp_positions).where(where))
                return
            updated = conn.execute(sa.update(lp_positions).where(where).values(shares=shares))
            if updated.rowcount == 0:
                conn.execute(
                    sa.insert(lp_positions).values(pool_id=pool_id, provider=provider, shares=shares)
                )

    def list_positions(self, pool_id: str) -> list[tuple[str, int]]:
        query = (
            sa.select(lp_positions.c.provider, lp_positions.c.shares)
            .where(lp_positions.c.pool_id == pool_id)
            .order_by(lp_positions.c.provider)
        )
        with self._connection() as conn:
            return [(row.provider, row.shares) for row in conn.execute(query)]

    def list_provider_positions(self, provider: str) -> list[tuple[str, int]]:
        query = (
            sa.select(lp_positions.c.pool_id, lp_positions.c.shares)
            .where(lp_positions.c.provider == provider)
            .order_by(lp_positions.c.pool_id)
        )
        with self._connection() as conn:
            return [(row.pool_id, row.shares) for row in conn.execute(query)]

    # --- Snapshots -----------------------------------------------------------

    def add_snapshot(self, snapshot: Snapshot) -> bool:
        exists = sa.select(pool_snapshots.c.pool_id).where(
            pool_snapshots.c.pool_id == snapshot.pool_id,
            pool_snapshots.c.timestamp == snapshot.timestamp,
        )
        with self._connection() as conn:
            if conn.execute(exists).first() is not None:
                return False
            conn.execute(
                sa.insert(pool_snapshots).values(
                    pool_id=snapshot.pool_id,
                    timestamp=snapshot.timestamp,
                    reserve_a=snapshot.reserve_a,
                    reserve_b=snapshot.reserve_b,
                )
            )
        return True

    def latest_snapshot_at_or_before(self, pool_id: str, at: datetime) -> Snapshot | None:
        query = (
            sa.select(pool_snapshots)
            .where(pool_snapshots.c.pool_id == pool_id, pool_snapshots.c.timestamp <= at)
            .order_by(pool_snapshots.c.timestamp.desc())
            .limit(1)
        )
        with self._connection() as conn:
            row = conn.execute(query).mappings().first()
        return _snapshot_from_row(row) if row is not None else None

    def list_snapshots(self, pool_id: str) -> list[Snapshot]:
        query = (
            sa.select(pool_snapshots)
            .where(pool_snapshots.c.pool_id == pool_id)
            .order_by(pool_snapshots.c.timestamp)
        )
        with self._connection() as conn:
            return [_snapshot_from_row(row) for row in conn.execute(query).mappings()]

    def delete_snapshots_before(self, cutoff: datetime) -> int:
        with self._connection() as conn:
            result = conn.execute(sa.delete(pool_snapshots).where(pool_snapshots.c.timestamp < cutoff))
        return result.rowcount or 0

    # --- Protocol fees -------------------------------------------------------

    def add_protocol_fee(self, token: str, amount: int) -> None:
        query = sa.select(protocol_fee_totals.c.amount).where(protocol_fee_totals.c.token == token)
        if self._in_unit_of_work:
            query = query.with_for_update()
        with self._connection() as conn:
            current = conn.execute(query).scalar()
            if current is None:
                conn.execute(sa.insert(protocol_fee_totals).values(token=token, amount=amount))
            else:
                conn.execute(
                    sa.update(protocol_fee_totals)
                    .where(protocol_fee_totals.c.token == token)
                    .values(amount=current + amount)
                )

    def protocol_fees(self) -> dict[str, int]:
        with self._connection() as conn:
            return {row.token: row.amount for row in conn.execute(sa.select(protocol_fee_totals))}

    # --- Pending transactions ------------------------------------------------

    def insert_transaction(self, tx: PendingTransaction) -> None:
        with self._connection() as conn:
            conn.execute(sa.insert(pending_transactions).values(**_transaction_values(tx)))

    def update_transaction(self, tx: PendingTransaction) -> None:
        values = _transaction_values(tx)
        del values["id"]
        with self._connection() as conn:
            conn.execute(
                sa.update(pending_transactions)
                .where(pending_transactions.c.id == tx.id)
                .values(**values)
            )

    def get_transaction(self, tx_id: str) -> PendingTransaction | None:
        query = sa.select(pending_transactions).where(pending_transactions.c.id == tx_id)
        with self._connection() as conn:
            row = conn.execute(query).mappings().first()
        return _transaction_from_row(row) if row is not None else None

    def list_transactions(
        self,
        state: TransactionState,
        tx1_completed_by: datetime | None = None,
    ) -> list[PendingTransaction]:
        query = sa.select(pending_transactions).where(pending_transactions.c.state == state.value)
        if tx1_completed_by is not None:
            query = query.where(pending_transactions.c.tx1_completed_at <= tx1_completed_by)
        query = query.order_by(pending_transactions.c.created_at.desc())
        with self._connection() as conn:
            return [_transaction_from_row(row) for row in conn.execute(query).mappings()]


def _pool_values(record: PoolRecord) -> dict[str, Any]:
    return {
        "pool_id": record.pool_id,
        "token_a": record.token_a,
        "token_b": record.token_b,
        "pair_key": record.pair_key,
        "fee_bps": record.fee_bps,
        "reserve_a": record.reserve_a,
        "reserve_b": record.reserve_b,
        "total_shares": record.total_shares,
        "active": record.active,
        "created_at": record.created_at,
    }


def _pool_from_row(row: Any) -> PoolRecord:
    return PoolRecord(
        pool_id=row["pool_id"],
        token_a=row["token_a"],
        token_b=row["token_b"],
        pair_key=row["pair_key"],
        fee_bps=row["fee_bps"],
        reserve_a=row["reserve_a"],
        reserve_b=row["reserve_b"],
        total_shares=row["total_shares"],
        active=bool(row["active"]),
        created_at=row["created_at"],
    )


def _snapshot_from_row(row: Any) -> Snapshot:
    return Snapshot(
        pool_id=row["pool_id"],
        reserve_a=row["reserve_a"],
        reserve_b=row["reserve_b"],
        timestamp=row["timestamp"],
    )


def _transaction_values(tx: PendingTransaction) -> dict[str, Any]:
    return {
        "id": tx.id,
        "type": tx.type.value,
        "user_address": tx.user_address,
        "pool_id": tx.pool_id,
        "params": tx.params,
        "state": tx.state.value,
        "created_at": tx.created_at,
        "tx1_hash": tx.tx1_hash,
        "tx2_hash": tx.tx2_hash,
        "recovery_tx_hash": tx.recovery_tx_hash,
        "error_message": tx.error_message,
        "retry_count": tx.retry_count,
        "tx1_completed_at": tx.tx1_completed_at,
        "tx2_completed_at": tx.tx2_completed_at,
        "tx2_failed_at": tx.tx2_failed_at,
        "recovered_at": tx.recovered_at,
        "result": tx.result,
    }


def _transaction_from_row(row: Any) -> PendingTransaction:
    return PendingTransaction(
        id=row["id"],
        type=TransactionType(row["type"]),
        user_address=row["user_address"],
        pool_id=row["pool_id"],
        params=dict(row["params"]),
        state=TransactionState(row["state"]),
        created_at=row["created_at"],
        tx1_hash=row["tx1_hash"],
        tx2_hash=row["tx2_hash"],
        recovery_tx_hash=row["recovery_tx_hash"],
        error_message=row["error_message"],
        retry_count=row["retry_count"],
        tx1_completed_at=row["tx1_completed_at"],
        tx2_completed_at=row["tx2_completed_at"],
        tx2_failed_at=row["tx2_failed_at"],
        recovered_at=row["recovered_at"],
        result=dict(row["result"] or {}),
    )


__all__ = ["SqlStore", "create_store_engine", "metadata"]
