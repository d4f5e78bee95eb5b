"""PostgreSQL persistence for subscriptions and applied payment references."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional, Sequence

import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..database import managed_connection
from .exceptions import DuplicatePaymentError
from .models import Subscription, SubscriptionTier

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        id TEXT PRIMARY KEY,
        payer_id TEXT NOT NULL,
        tier TEXT NOT NULL CHECK (tier IN ('basic', 'pro')),
        amount_paid BIGINT NOT NULL CHECK (amount_paid >= 0),
        payment_reference TEXT UNIQUE,
        started_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_payer ON subscriptions (payer_id)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_expires ON subscriptions (expires_at)",
    """
    CREATE TABLE IF NOT EXISTS subscription_payments (
        payment_reference TEXT PRIMARY KEY,
        subscription_id TEXT NOT NULL REFERENCES subscriptions (id) ON DELETE CASCADE,
        tier TEXT NOT NULL,
        amount BIGINT NOT NULL,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)


def ensure_schema(conn: Optional[PgConnection] = None) -> None:
    """Create the subscription tables when they do not exist yet."""

    with managed_connection(conn) as (connection, _):
        with connection.cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=row["id"],
        payer_id=row["payer_id"],
        tier=SubscriptionTier(row["tier"]),
        amount_paid=int(row["amount_paid"]),
        payment_reference=row.get("payment_reference"),
        started_at=row["started_at"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
    )


class PostgresSubscriptionRepository:
    """Concrete repository persisting subscriptions in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None, payer_table: str = "users") -> None:
        self._conn = conn
        self._payer_table = payer_table

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

    def payer_exists(self, payer_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                f'SELECT 1 FROM "{self._payer_table}" WHERE id = %s LIMIT 1',
                (payer_id,),
            )
            return cursor.fetchone() is not None

    def find_subscription_by_payment_reference(self, payment_reference: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT sub.*
                FROM subscriptions AS sub
                LEFT JOIN subscription_payments AS pay ON pay.subscription_id = sub.id
                WHERE sub.payment_reference = %(ref)s OR pay.payment_reference = %(ref)s
                LIMIT 1
                """,
                {"ref": payment_reference},
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def find_latest_subscription(self, payer_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE payer_id = %s
                ORDER BY expires_at DESC, created_at DESC
                LIMIT 1
                """,
                (payer_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscriptions WHERE id = %s LIMIT 1", (subscription_id,))
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def insert_subscription(self, subscription: Subscription) -> Optional[Subscription]:
        try:
            with self._cursor() as cursor:
                # Held until commit; serializes first payments for one payer.
                cursor.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (subscription.payer_id,))
                cursor.execute(
                    "SELECT 1 FROM subscriptions WHERE payer_id = %s LIMIT 1",
                    (subscription.payer_id,),
                )
                if cursor.fetchone() is not None:
                    return None
                cursor.execute(
                    """
                    INSERT INTO subscriptions (
                        id,
                        payer_id,
                        tier,
                        amount_paid,
                        payment_reference,
                        started_at,
                        expires_at,
                        created_at
                    )
                    VALUES (%(id)s, %(payer_id)s, %(tier)s, %(amount_paid)s, %(payment_reference)s,
                            %(started_at)s, %(expires_at)s, %(created_at)s)
                    RETURNING *
                    """,
                    {
                        "id": subscription.id,
                        "payer_id": subscription.payer_id,
                        "tier": subscription.tier.value,
                        "amount_paid": subscription.amount_paid,
                        "payment_reference": subscription.payment_reference,
                        "started_at": subscription.started_at,
                        "expires_at": subscription.expires_at,
                        "created_at": subscription.created_at,
                    },
                )
                row = cursor.fetchone()
                if not row:
                    raise RuntimeError("Failed to persist subscription")
                if subscription.payment_reference:
                    self._record_payment(
                        cursor,
                        subscription.payment_reference,
                        subscription.id,
                        subscription.tier,
                        subscription.amount_paid,
                    )
                return _row_to_subscription(row)
        except psycopg2.errors.UniqueViolation as exc:
            raise DuplicatePaymentError(subscription.payment_reference) from exc

    def update_subscription_expiry_tier_amount(
        self,
        subscription_id: str,
        *,
        now: datetime,
        additional_days: int,
        new_tier: SubscriptionTier,
        delta_amount: int,
        payment_reference: Optional[str],
    ) -> Optional[Subscription]:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    UPDATE subscriptions
                    SET expires_at = GREATEST(expires_at, %(now)s) + make_interval(days => %(additional_days)s),
                        tier = CASE
                            WHEN tier = 'pro' OR %(new_tier)s = 'pro' THEN 'pro'
                            ELSE 'basic'
                        END,
                        amount_paid = amount_paid + %(delta_amount)s
                    WHERE id = %(id)s
                    RETURNING *
                    """,
                    {
                        "id": subscription_id,
                        "now": now,
                        "additional_days": additional_days,
                        "new_tier": new_tier.value,
                        "delta_amount": delta_amount,
                    },
                )
                row = cursor.fetchone()
                if not row:
                    return None
                if payment_reference:
                    self._record_payment(cursor, payment_reference, subscription_id, new_tier, delta_amount)
                return _row_to_subscription(row)
        except psycopg2.errors.UniqueViolation as exc:
            raise DuplicatePaymentError(payment_reference) from exc

    def list_subscriptions(self, payer_id: str) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM subscriptions WHERE payer_id = %s ORDER BY created_at DESC",
                (payer_id,),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def list_subscriptions_expiring_between(self, start: datetime, end: datetime) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE expires_at > %s AND expires_at <= %s
                ORDER BY expires_at ASC
                """,
                (start, end),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def _record_payment(
        self,
        cursor: PgCursor,
        payment_reference: str,
        subscription_id: str,
        tier: SubscriptionTier,
        amount: int,
    ) -> None:
        cursor.execute(
            """
            INSERT INTO subscription_payments (payment_reference, subscription_id, tier, amount)
            VALUES (%s, %s, %s, %s)
            """,
            (payment_reference, subscription_id, tier.value, amount),
        )


__all__ = ["PostgresSubscriptionRepository", "SCHEMA_STATEMENTS", "ensure_schema"]
