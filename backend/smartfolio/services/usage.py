"""Usage accounting for countable entitlements.

AI generations and AI tokens are counted over the current calendar month
(UTC). Portfolios are a standing cap and are counted over all time. The
monthly window deliberately ignores the Stripe billing period.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from pydantic import BaseModel

from smartfolio.models.billing import Feature


def _utcnow() -> datetime:
    return datetime.now(UTC)


def start_of_month(now: datetime) -> datetime:
    """First instant of ``now``'s calendar month, in UTC."""
    now = now.astimezone(UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class AIGenerationRecord(BaseModel):
    """A persisted AI generation, as far as quota counting is concerned."""

    user_id: str
    tokens_used: int = 0
    created_at: datetime


class UsageRepository(Protocol):
    """Read-only access to the tables usage is derived from."""

    async def count_ai_generations(self, user_id: str, since: datetime) -> int:
        """Number of generations created at or after ``since``."""

    async def sum_ai_tokens(self, user_id: str, since: datetime) -> int:
        """Tokens consumed by generations created at or after ``since``."""

    async def count_portfolios(self, user_id: str) -> int:
        """Number of portfolios the user owns."""


class InMemoryUsageRepository:
    """In-memory repository used for tests and local fallback."""

    def __init__(self) -> None:
        self.generations: list[AIGenerationRecord] = []
        self.portfolios: dict[str, int] = {}

    def add_generation(self, user_id: str, created_at: datetime, tokens_used: int = 0) -> None:
        self.generations.append(
            AIGenerationRecord(user_id=user_id, created_at=created_at, tokens_used=tokens_used)
        )

    def set_portfolio_count(self, user_id: str, count: int) -> None:
        self.portfolios[user_id] = count

    def _generations_since(self, user_id: str, since: datetime) -> list[AIGenerationRecord]:
        return [g for g in self.generations if g.user_id == user_id and g.created_at >= since]

    async def count_ai_generations(self, user_id: str, since: datetime) -> int:
        return len(self._generations_since(user_id, since))

    async def sum_ai_tokens(self, user_id: str, since: datetime) -> int:
        return sum(g.tokens_used for g in self._generations_since(user_id, since))

    async def count_portfolios(self, user_id: str) -> int:
        return self.portfolios.get(user_id, 0)


class SupabaseUsageRepository:
    """Supabase-backed usage counts."""

    def __init__(self, client, ai_generations_table: str, portfolios_table: str):
        self.client = client
        self.ai_generations_table = ai_generations_table
        self.portfolios_table = portfolios_table

    async def count_ai_generations(self, user_id: str, since: datetime) -> int:
        response = (
            await self.client.table(self.ai_generations_table)
            .select("id", count="exact")
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return response.count or 0

    async def sum_ai_tokens(self, user_id: str, since: datetime) -> int:
        response = (
            await self.client.table(self.ai_generations_table)
            .select("tokens_used")
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return sum(row.get("tokens_used") or 0 for row in response.data or [])

    async def count_portfolios(self, user_id: str) -> int:
        response = (
            await self.client.table(self.portfolios_table)
            .select("id", count="exact")
            .eq("user_id", user_id)
            .execute()
        )
        return response.count or 0


class UsageAccounting:
    """Counts consumable actions per feature, each in its own window."""

    def __init__(
        self,
        repository: UsageRepository,
        now_provider: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.now_provider = now_provider

    async def count_usage_this_month(self, user_id: str, feature: Feature) -> int:
        if feature == Feature.PORTFOLIOS:
            return await self.repository.count_portfolios(user_id)

        since = start_of_month(self.now_provider())
        if feature == Feature.AI_GENERATIONS:
            return await self.repository.count_ai_generations(user_id, since)
        if feature == Feature.AI_TOKENS:
            return await self.repository.sum_ai_tokens(user_id, since)
        return 0
