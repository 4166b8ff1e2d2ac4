"""Subscription stores (in-process map and Postgres)."""
from __future__ import annotations

from datetime import datetime
from typing import Protocol

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from sync_common.db.pool import BaseRepository
from webhook_service.domain.subscriptions import Subscription


class SubscriptionStore(Protocol):
    """Upsert-by-id map of subscriptions.

    ``record_success`` / ``record_failure`` are single atomic updates; callers
    must not emulate them with ``get`` + ``put``.
    """

    async def get(self, subscription_id: str) -> Subscription | None: ...

    async def put(self, subscription: Subscription) -> None: ...

    async def delete(self, subscription_id: str) -> bool: ...

    async def list(self) -> list[Subscription]: ...

    async def record_success(self, subscription_id: str, at: datetime) -> Subscription | None: ...

    async def record_failure(self, subscription_id: str, threshold: int) -> Subscription | None: ...


class InMemorySubscriptionStore:
    """Dict-backed store. Each mutation runs without awaiting, so it is atomic on the loop."""

    def __init__(self) -> None:
        self._items: dict[str, Subscription] = {}

    async def get(self, subscription_id: str) -> Subscription | None:
        return self._items.get(subscription_id)

    async def put(self, subscription: Subscription) -> None:
        self._items[subscription.id] = subscription

    async def delete(self, subscription_id: str) -> bool:
        return self._items.pop(subscription_id, None) is not None

    async def list(self) -> list[Subscription]:
        return list(self._items.values())

    async def record_success(self, subscription_id: str, at: datetime) -> Subscription | None:
        current = self._items.get(subscription_id)
        if current is None:
            return None
        updated = current.model_copy(
            update={"success_count": current.success_count + 1, "last_notified": at}
        )
        self._items[subscription_id] = updated
        return updated

    async def record_failure(self, subscription_id: str, threshold: int) -> Subscription | None:
        current = self._items.get(subscription_id)
        if current is None:
            return None
        error_count = current.error_count + 1
        updated = current.model_copy(
            update={
                "error_count": error_count,
                "active": current.active and error_count <= threshold,
            }
        )
        self._items[subscription_id] = updated
        return updated


class PostgresSubscriptionStore(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> Subscription:
        payload = dict(record)
        payload.pop("position", None)
        payload["events"] = list(payload["events"])
        return Subscription.model_validate(payload)

    async def get(self, subscription_id: str) -> Subscription | None:
        record = await self._fetchrow("SELECT * FROM webhook_subscriptions WHERE id = $1", subscription_id)
        return self._to_model(record) if record else None

    async def put(self, subscription: Subscription) -> None:
        await self._execute(
            """
            INSERT INTO webhook_subscriptions (
                id, url, events, secret, active, created_at,
                last_notified, success_count, error_count
            )
            VALUES ($1, $2, $3::text[], $4, $5, $6, $7, $8, $9)
            ON CONFLICT (id) DO UPDATE
            SET url = EXCLUDED.url,
                events = EXCLUDED.events,
                secret = EXCLUDED.secret,
                active = EXCLUDED.active,
                last_notified = EXCLUDED.last_notified,
                success_count = EXCLUDED.success_count,
                error_count = EXCLUDED.error_count
            """,
            subscription.id,
            subscription.url,
            subscription.events,
            subscription.secret,
            subscription.active,
            subscription.created_at,
            subscription.last_notified,
            subscription.success_count,
            subscription.error_count,
        )

    async def delete(self, subscription_id: str) -> bool:
        record = await self._fetchrow(
            "DELETE FROM webhook_subscriptions WHERE id = $1 RETURNING id",
            subscription_id,
        )
        return record is not None

    async def list(self) -> list[Subscription]:
        records = await self._fetch("SELECT * FROM webhook_subscriptions ORDER BY position ASC")
        return [self._to_model(r) for r in records]

    async def record_success(self, subscription_id: str, at: datetime) -> Subscription | None:
        record = await self._fetchrow(
            """
            UPDATE webhook_subscriptions
            SET success_count = success_count + 1,
                last_notified = $2
            WHERE id = $1
            RETURNING *
            """,
            subscription_id,
            at,
        )
        return self._to_model(record) if record else None

    async def record_failure(self, subscription_id: str, threshold: int) -> Subscription | None:
        # active is one-way: once false it is never set back here
        record = await self._fetchrow(
            """
            UPDATE webhook_subscriptions
            SET error_count = error_count + 1,
                active = active AND (error_count + 1) <= $2
            WHERE id = $1
            RETURNING *
            """,
            subscription_id,
            threshold,
        )
        return self._to_model(record) if record else None
