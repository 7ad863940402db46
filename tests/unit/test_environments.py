"""Tests for environment resolution and deployment tokens."""

import asyncio

import pytest

from pipeline_orchestrator.environments import Environment, EnvironmentRegistry
from pipeline_orchestrator.models.definition import EnvironmentSpec
from pipeline_orchestrator.testing.doubles import wait_until

PRODUCTION = Environment(name="production", url="https://www.example.com", key="production")


@pytest.fixture
def registry() -> EnvironmentRegistry:
    """Create a registry protecting production."""
    return EnvironmentRegistry(frozenset(["production"]))


class TestResolve:
    """Tests for EnvironmentRegistry.resolve."""

    def test_expands_dynamic_names(self, registry: EnvironmentRegistry) -> None:
        """Expands name and URL templates from the job variables."""
        spec = EnvironmentSpec(
            name="${TARGET_ENV}/${CI_COMMIT_REF_SLUG}",
            url="https://${CI_COMMIT_REF_SLUG}.${TARGET_ENV}.example.com",
        )

        environment = registry.resolve(
            spec, {"TARGET_ENV": "dev", "CI_COMMIT_REF_SLUG": "development"}
        )

        assert environment == Environment(
            name="dev/development",
            url="https://development.dev.example.com",
            key=None,
        )
        assert not environment.protected

    def test_protects_listed_environments(self, registry: EnvironmentRegistry) -> None:
        """Serializes environments named in the protected set."""
        environment = registry.resolve(EnvironmentSpec(name="production"), {})

        assert environment.key == "production"
        assert environment.protected

    def test_protects_nested_environments(self, registry: EnvironmentRegistry) -> None:
        """Serializes environments whose first path segment is protected."""
        environment = registry.resolve(EnvironmentSpec(name="production/eu"), {})

        assert environment.key == "production/eu"

    def test_resource_group_overrides_name(self, registry: EnvironmentRegistry) -> None:
        """Uses the resource group as the concurrency key when given."""
        environment = registry.resolve(
            EnvironmentSpec(name="review/${SLUG}", resource_group="review"),
            {"SLUG": "x"},
        )

        assert environment.key == "review"


class TestAcquire:
    """Tests for EnvironmentRegistry.acquire."""

    async def test_mutual_exclusion(self, registry: EnvironmentRegistry) -> None:
        """Never lets two holders of the same token run concurrently."""
        active = 0
        peak = 0

        async def deploy(holder: str) -> None:
            nonlocal active, peak
            async with registry.acquire(PRODUCTION, holder):
                active += 1
                peak = max(peak, active)
                for _ in range(5):
                    await asyncio.sleep(0)
                active -= 1

        await asyncio.gather(*(deploy(f"{i}/deploy") for i in range(10)))

        assert peak == 1
        assert registry.holder("production") is None

    async def test_waiters_served_in_arrival_order(
        self, registry: EnvironmentRegistry
    ) -> None:
        """Hands the token to queued holders first come, first served."""
        order: list[str] = []
        release = asyncio.Event()

        async def deploy(holder: str) -> None:
            async with registry.acquire(PRODUCTION, holder):
                order.append(holder)
                if holder == "1/deploy":
                    await release.wait()

        first = asyncio.create_task(deploy("1/deploy"))
        await wait_until(lambda: registry.holder("production") == "1/deploy")
        second = asyncio.create_task(deploy("2/deploy"))
        await wait_until(lambda: registry.queued("production") == ["2/deploy"])
        third = asyncio.create_task(deploy("3/deploy"))
        await wait_until(lambda: len(registry.queued("production")) == 2)

        release.set()
        await asyncio.gather(first, second, third)

        assert order == ["1/deploy", "2/deploy", "3/deploy"]

    async def test_cancel_releases_token(self, registry: EnvironmentRegistry) -> None:
        """Releases the token when the holder is canceled."""
        entered = asyncio.Event()

        async def hold() -> None:
            async with registry.acquire(PRODUCTION, "1/deploy"):
                entered.set()
                await asyncio.Event().wait()

        holder = asyncio.create_task(hold())
        await entered.wait()
        holder.cancel()
        with pytest.raises(asyncio.CancelledError):
            await holder

        assert registry.holder("production") is None
        async with registry.acquire(PRODUCTION, "2/deploy"):
            assert registry.holder("production") == "2/deploy"

    async def test_canceled_waiter_leaves_queue(
        self, registry: EnvironmentRegistry
    ) -> None:
        """Skips queued holders that were canceled while waiting."""
        release = asyncio.Event()
        served: list[str] = []

        async def deploy(holder: str) -> None:
            async with registry.acquire(PRODUCTION, holder):
                served.append(holder)
                if holder == "1/deploy":
                    await release.wait()

        first = asyncio.create_task(deploy("1/deploy"))
        await wait_until(lambda: registry.holder("production") == "1/deploy")
        second = asyncio.create_task(deploy("2/deploy"))
        third = asyncio.create_task(deploy("3/deploy"))
        await wait_until(lambda: len(registry.queued("production")) == 2)

        second.cancel()
        release.set()
        await asyncio.gather(first, third)

        assert served == ["1/deploy", "3/deploy"]
        assert second.cancelled()

    async def test_unprotected_environments_never_queue(
        self, registry: EnvironmentRegistry
    ) -> None:
        """Enters unprotected environments concurrently."""
        review = Environment(name="review/x")
        inside = 0

        async def deploy() -> int:
            nonlocal inside
            async with registry.acquire(review, "job"):
                inside += 1
                await asyncio.sleep(0)
                return inside

        results = await asyncio.gather(deploy(), deploy())

        assert max(results) == 2
