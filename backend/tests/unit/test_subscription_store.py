"""Unit tests for subscription repositories."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

from smartfolio.models.billing import PaymentRecord, PaymentStatus, Plan, SubscriptionStatus
from smartfolio.services.subscription_store import (
    InMemorySubscriptionRepository,
    SupabaseSubscriptionRepository,
)


class TestInMemorySubscriptionRepository:
    async def test_upsert_creates_row_with_defaults(self):
        repo = InMemorySubscriptionRepository()

        stored = await repo.upsert_subscription("u1", {"stripe_customer_id": "cus_1"})

        assert stored.user_id == "u1"
        assert stored.plan == Plan.FREE
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.created_at is not None

    async def test_upsert_only_overwrites_given_fields(self):
        repo = InMemorySubscriptionRepository()
        await repo.upsert_subscription("u1", {"stripe_customer_id": "cus_1", "plan": Plan.PRO})

        stored = await repo.upsert_subscription("u1", {"status": SubscriptionStatus.PAST_DUE})

        assert stored.plan == Plan.PRO
        assert stored.stripe_customer_id == "cus_1"
        assert stored.status == SubscriptionStatus.PAST_DUE
        assert len(repo.subscriptions) == 1

    async def test_update_missing_row_returns_none(self):
        repo = InMemorySubscriptionRepository()

        assert await repo.update_subscription("ghost", {"status": SubscriptionStatus.CANCELED}) is None
        assert repo.subscriptions == {}

    async def test_lookup_by_external_refs(self):
        repo = InMemorySubscriptionRepository()
        await repo.upsert_subscription(
            "u1", {"stripe_customer_id": "cus_1", "stripe_subscription_id": "sub_1"}
        )

        assert (await repo.get_by_subscription_id("sub_1")).user_id == "u1"
        assert (await repo.get_by_customer_id("cus_1")).user_id == "u1"
        assert await repo.get_by_subscription_id("sub_missing") is None

    async def test_returned_rows_are_copies(self):
        repo = InMemorySubscriptionRepository()
        await repo.upsert_subscription("u1", {})

        fetched = await repo.get_subscription("u1")
        fetched.plan = Plan.ENTERPRISE

        assert (await repo.get_subscription("u1")).plan == Plan.FREE

    async def test_set_customer_if_absent_keeps_first_customer(self):
        repo = InMemorySubscriptionRepository()

        first = await repo.set_customer_if_absent("u1", "cus_a")
        second = await repo.set_customer_if_absent("u1", "cus_b")

        assert first.stripe_customer_id == "cus_a"
        assert second.stripe_customer_id == "cus_a"

    async def test_payments_newest_first(self):
        repo = InMemorySubscriptionRepository()
        for day, intent in [(1, "pi_old"), (15, "pi_new")]:
            repo.payments.append(
                PaymentRecord(
                    id=intent,
                    user_id="u1",
                    stripe_payment_intent_id=intent,
                    amount=1900,
                    status=PaymentStatus.SUCCEEDED,
                    created_at=datetime(2026, 10, day, tzinfo=UTC),
                )
            )

        payments = await repo.list_payments("u1")

        assert [p.id for p in payments] == ["pi_new", "pi_old"]
        assert await repo.list_payments("u2") == []


def _mock_supabase(rows: list[dict]) -> MagicMock:
    """Supabase query builder whose chained calls all resolve to ``rows``."""
    query = MagicMock()
    for method in ("select", "eq", "limit", "upsert", "update", "is_", "order"):
        getattr(query, method).return_value = query
    query.execute = AsyncMock(return_value=MagicMock(data=rows))
    client = MagicMock()
    client.table.return_value = query
    return client


class TestSupabaseSubscriptionRepository:
    async def test_upsert_sends_only_changed_columns(self):
        client = _mock_supabase([{"user_id": "u1", "plan": "PRO", "status": "ACTIVE"}])
        repo = SupabaseSubscriptionRepository(client, "subscriptions", "payments")

        stored = await repo.upsert_subscription(
            "u1",
            {"plan": Plan.PRO, "current_period_end": datetime(2026, 11, 1, tzinfo=UTC)},
        )

        payload = client.table.return_value.upsert.call_args.args[0]
        assert client.table.return_value.upsert.call_args.kwargs == {"on_conflict": "user_id"}
        assert payload["plan"] == "PRO"
        assert payload["current_period_end"].startswith("2026-11-01")
        assert payload["user_id"] == "u1"
        assert "status" not in payload
        assert stored.plan == Plan.PRO

    async def test_get_subscription_returns_none_without_rows(self):
        repo = SupabaseSubscriptionRepository(_mock_supabase([]), "subscriptions", "payments")

        assert await repo.get_subscription("u1") is None

    async def test_update_subscription_filters_by_user(self):
        client = _mock_supabase([{"user_id": "u1", "status": "CANCELED"}])
        repo = SupabaseSubscriptionRepository(client, "subscriptions", "payments")

        stored = await repo.update_subscription("u1", {"status": SubscriptionStatus.CANCELED})

        query = client.table.return_value
        assert query.update.call_args.args[0]["status"] == "CANCELED"
        query.eq.assert_called_with("user_id", "u1")
        assert stored.status == SubscriptionStatus.CANCELED
