"""Subscription persistence boundary.

Writes are field-targeted: callers pass only the fields an operation owns,
with absolute values. There is no read-modify-write of counters, so two
webhook deliveries for the same user can interleave without losing updates.
"""

from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

from smartfolio.models.billing import PaymentRecord, Subscription

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SubscriptionRepository(Protocol):
    """Storage contract for subscription state."""

    async def get_subscription(self, user_id: str) -> Subscription | None:
        """Fetch the user's subscription row."""

    async def get_by_subscription_id(self, stripe_subscription_id: str) -> Subscription | None:
        """Fetch the row correlated with a Stripe subscription."""

    async def get_by_customer_id(self, stripe_customer_id: str) -> Subscription | None:
        """Fetch the row correlated with a Stripe customer."""

    async def upsert_subscription(self, user_id: str, changes: dict[str, Any]) -> Subscription:
        """Create the row with defaults + changes, or overwrite only ``changes``."""

    async def update_subscription(self, user_id: str, changes: dict[str, Any]) -> Subscription | None:
        """Overwrite ``changes`` on an existing row. Returns None if absent."""

    async def set_customer_if_absent(self, user_id: str, stripe_customer_id: str) -> Subscription:
        """Store a customer id unless one is already stored; return the row."""

    async def list_payments(self, user_id: str) -> list[PaymentRecord]:
        """Payment history for a user, newest first."""


class InMemorySubscriptionRepository:
    """In-memory repository used for tests and local fallback."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, Subscription] = {}
        self.payments: list[PaymentRecord] = []

    async def get_subscription(self, user_id: str) -> Subscription | None:
        subscription = self.subscriptions.get(user_id)
        return subscription.model_copy(deep=True) if subscription else None

    async def get_by_subscription_id(self, stripe_subscription_id: str) -> Subscription | None:
        for subscription in self.subscriptions.values():
            if subscription.stripe_subscription_id == stripe_subscription_id:
                return subscription.model_copy(deep=True)
        return None

    async def get_by_customer_id(self, stripe_customer_id: str) -> Subscription | None:
        for subscription in self.subscriptions.values():
            if subscription.stripe_customer_id == stripe_customer_id:
                return subscription.model_copy(deep=True)
        return None

    async def upsert_subscription(self, user_id: str, changes: dict[str, Any]) -> Subscription:
        now = _utcnow()
        existing = self.subscriptions.get(user_id)
        if existing is None:
            stored = Subscription.model_validate(
                {**changes, "user_id": user_id, "created_at": now, "updated_at": now}
            )
        else:
            stored = Subscription.model_validate(
                {**existing.model_dump(), **changes, "user_id": user_id, "updated_at": now}
            )
        self.subscriptions[user_id] = stored
        return stored.model_copy(deep=True)

    async def update_subscription(self, user_id: str, changes: dict[str, Any]) -> Subscription | None:
        if user_id not in self.subscriptions:
            return None
        return await self.upsert_subscription(user_id, changes)

    async def set_customer_if_absent(self, user_id: str, stripe_customer_id: str) -> Subscription:
        existing = self.subscriptions.get(user_id)
        if existing is not None and existing.stripe_customer_id:
            return existing.model_copy(deep=True)
        return await self.upsert_subscription(user_id, {"stripe_customer_id": stripe_customer_id})

    async def list_payments(self, user_id: str) -> list[PaymentRecord]:
        rows = [p for p in self.payments if p.user_id == user_id]
        return sorted(rows, key=lambda p: p.created_at, reverse=True)


class SupabaseSubscriptionRepository:
    """Supabase-backed repository for subscription state."""

    def __init__(self, client, subscriptions_table: str, payments_table: str):
        self.client = client
        self.subscriptions_table = subscriptions_table
        self.payments_table = payments_table

    async def _first(self, column: str, value: str) -> Subscription | None:
        response = (
            await self.client.table(self.subscriptions_table)
            .select("*")
            .eq(column, value)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        return Subscription.model_validate(rows[0])

    async def get_subscription(self, user_id: str) -> Subscription | None:
        return await self._first("user_id", user_id)

    async def get_by_subscription_id(self, stripe_subscription_id: str) -> Subscription | None:
        return await self._first("stripe_subscription_id", stripe_subscription_id)

    async def get_by_customer_id(self, stripe_customer_id: str) -> Subscription | None:
        return await self._first("stripe_customer_id", stripe_customer_id)

    @staticmethod
    def _serialize(changes: dict[str, Any]) -> dict[str, Any]:
        # Validate through the model so enums/datetimes serialize like stored rows
        validated = Subscription.model_validate({"user_id": "_", **changes})
        dumped = validated.model_dump(mode="json")
        return {key: dumped[key] for key in changes}

    async def upsert_subscription(self, user_id: str, changes: dict[str, Any]) -> Subscription:
        # PostgREST upsert only sets the columns present in the payload on
        # conflict, so fields owned by other operations are left untouched.
        payload = {
            **self._serialize(changes),
            "user_id": user_id,
            "updated_at": _utcnow().isoformat(),
        }
        response = (
            await self.client.table(self.subscriptions_table)
            .upsert(payload, on_conflict="user_id")
            .execute()
        )
        rows = response.data or []
        if rows:
            return Subscription.model_validate(rows[0])
        # Some Supabase responses return no data unless `returning=representation`.
        stored = await self.get_subscription(user_id)
        if stored is None:
            raise RuntimeError(f"Subscription upsert for user {user_id} returned no row")
        return stored

    async def update_subscription(self, user_id: str, changes: dict[str, Any]) -> Subscription | None:
        payload = {**self._serialize(changes), "updated_at": _utcnow().isoformat()}
        response = (
            await self.client.table(self.subscriptions_table)
            .update(payload)
            .eq("user_id", user_id)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        return Subscription.model_validate(rows[0])

    async def set_customer_if_absent(self, user_id: str, stripe_customer_id: str) -> Subscription:
        # Create the row if missing without touching an existing one, then
        # claim the customer column only while it is still null.
        await (
            self.client.table(self.subscriptions_table)
            .upsert({"user_id": user_id}, on_conflict="user_id", ignore_duplicates=True)
            .execute()
        )
        await (
            self.client.table(self.subscriptions_table)
            .update({"stripe_customer_id": stripe_customer_id, "updated_at": _utcnow().isoformat()})
            .eq("user_id", user_id)
            .is_("stripe_customer_id", "null")
            .execute()
        )
        stored = await self.get_subscription(user_id)
        if stored is None:
            raise RuntimeError(f"Subscription row for user {user_id} missing after insert")
        if stored.stripe_customer_id != stripe_customer_id:
            logger.info(
                "stripe_customer_already_stored",
                user_id=user_id,
                stored_customer_id=stored.stripe_customer_id,
                discarded_customer_id=stripe_customer_id,
            )
        return stored

    async def list_payments(self, user_id: str) -> list[PaymentRecord]:
        response = (
            await self.client.table(self.payments_table)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [PaymentRecord.model_validate(row) for row in response.data or []]
