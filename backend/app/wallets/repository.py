"""PostgreSQL persistence for custodial wallets."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Optional, Sequence

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..database import managed_connection
from .models import RefundWallet, UserWallet

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS user_wallets (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE,
        wallet_address TEXT NOT NULL,
        encrypted_private_key TEXT NOT NULL,
        network TEXT NOT NULL DEFAULT 'base',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_user_wallets_address ON user_wallets (LOWER(wallet_address))",
    """
    CREATE TABLE IF NOT EXISTS refund_wallets (
        id TEXT PRIMARY KEY,
        resource_owner_id TEXT NOT NULL,
        network TEXT NOT NULL,
        wallet_address TEXT NOT NULL,
        encrypted_private_key TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (resource_owner_id, network)
    )
    """,
)


def ensure_schema(conn: Optional[PgConnection] = None) -> None:
    """Create the wallet tables when they do not exist yet."""

    with managed_connection(conn) as (connection, _):
        with connection.cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)


def _row_to_user_wallet(row: dict) -> UserWallet:
    return UserWallet(
        id=row["id"],
        user_id=row["user_id"],
        wallet_address=row["wallet_address"],
        encrypted_private_key=row["encrypted_private_key"],
        network=row["network"],
        created_at=row["created_at"],
    )


def _row_to_refund_wallet(row: dict) -> RefundWallet:
    return RefundWallet(
        id=row["id"],
        resource_owner_id=row["resource_owner_id"],
        network=row["network"],
        wallet_address=row["wallet_address"],
        encrypted_private_key=row["encrypted_private_key"],
        created_at=row["created_at"],
    )


class PostgresWalletRepository:
    """Concrete repository persisting custodial wallets in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def get_user_wallet(self, user_id: str) -> Optional[UserWallet]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM user_wallets WHERE user_id = %s LIMIT 1", (user_id,))
            row = cursor.fetchone()
            return _row_to_user_wallet(row) if row else None

    def find_user_wallet_by_address(self, address: str) -> Optional[UserWallet]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM user_wallets WHERE LOWER(wallet_address) = LOWER(%s) LIMIT 1",
                (address,),
            )
            row = cursor.fetchone()
            return _row_to_user_wallet(row) if row else None

    def insert_user_wallet(self, wallet: UserWallet) -> Optional[UserWallet]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO user_wallets (id, user_id, wallet_address, encrypted_private_key, network, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO NOTHING
                RETURNING *
                """,
                (
                    wallet.id,
                    wallet.user_id,
                    wallet.wallet_address,
                    wallet.encrypted_private_key,
                    wallet.network,
                    wallet.created_at,
                ),
            )
            row = cursor.fetchone()
            return _row_to_user_wallet(row) if row else None

    def get_refund_wallet(self, resource_owner_id: str, network: str) -> Optional[RefundWallet]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM refund_wallets WHERE resource_owner_id = %s AND network = %s LIMIT 1",
                (resource_owner_id, network),
            )
            row = cursor.fetchone()
            return _row_to_refund_wallet(row) if row else None

    def list_refund_wallets(self, resource_owner_id: str) -> Sequence[RefundWallet]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM refund_wallets WHERE resource_owner_id = %s ORDER BY network",
                (resource_owner_id,),
            )
            rows = cursor.fetchall() or []
            return [_row_to_refund_wallet(row) for row in rows]

    def insert_refund_wallet(self, wallet: RefundWallet) -> Optional[RefundWallet]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO refund_wallets (
                    id,
                    resource_owner_id,
                    network,
                    wallet_address,
                    encrypted_private_key,
                    created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (resource_owner_id, network) DO NOTHING
                RETURNING *
                """,
                (
                    wallet.id,
                    wallet.resource_owner_id,
                    wallet.network,
                    wallet.wallet_address,
                    wallet.encrypted_private_key,
                    wallet.created_at,
                ),
            )
            row = cursor.fetchone()
            return _row_to_refund_wallet(row) if row else None

    def delete_refund_wallet(self, resource_owner_id: str, network: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM refund_wallets WHERE resource_owner_id = %s AND network = %s",
                (resource_owner_id, network),
            )
            return cursor.rowcount > 0


__all__ = ["PostgresWalletRepository", "SCHEMA_STATEMENTS", "ensure_schema"]
