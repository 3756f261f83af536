from __future__ import annotations

import asyncio

import pytest

from bowl_recs.catalog.menu import SIGNATURE_BOWLS
from bowl_recs.recommendations.cache import CacheKey
from bowl_recs.recommendations.coordinator import RecommendationCoordinator
from bowl_recs.recommendations.errors import InvalidRequestError, UpstreamFailure
from bowl_recs.recommendations.models import (
    HealthStatus,
    PersonalizationHealth,
    RecommendationCandidate,
    RecommendationRequest,
    RecommendationResult,
    RecommendationSource,
)

KAMPONG, MUSCLE_BEACH, SHIBUYA, GARDEN_TOFU, STEAKHOUSE = SIGNATURE_BOWLS


def _candidates(*pairs) -> list[RecommendationCandidate]:
    return [RecommendationCandidate(bowl=bowl, confidence=c, reasoning="ml") for bowl, c in pairs]


ML_PICKS = _candidates((GARDEN_TOFU, 0.9), (STEAKHOUSE, 0.8), (KAMPONG, 0.7))


@pytest.fixture
def catalog(make_catalog):
    return make_catalog(popular=[MUSCLE_BEACH, KAMPONG, GARDEN_TOFU], signature=list(SIGNATURE_BOWLS))


def _coordinator(personalization, catalog, config, clock) -> RecommendationCoordinator:
    return RecommendationCoordinator(personalization, catalog, config, clock)


def test_vegan_request_filters_primary_results(make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(ML_PICKS)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)

    result = asyncio.run(coordinator.resolve({"location_id": "heybo-raffles", "dietary_restrictions": ["vegan"]}))

    assert result.source is RecommendationSource.ml
    assert result.fallback_used is False
    assert [c.bowl.id for c in result.recommendations] == ["signature-4"]
    assert all(i.is_vegan for c in result.recommendations for i in c.bowl.ingredients)
    assert result.confidence == pytest.approx(0.9)


def test_slow_primary_falls_back_at_deadline(make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(ML_PICKS, clock=fast_clock, delay_s=5.0)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)

    async def scenario():
        result = await coordinator.resolve(RecommendationRequest(location_id="heybo-raffles"))
        completed_at_return = primary.completed
        await coordinator.aclose()
        return result, completed_at_return

    result, completed_at_return = asyncio.run(scenario())

    assert result.source is not RecommendationSource.ml
    assert result.fallback_used is True
    assert 2990 <= result.processing_time_ms < 5000
    assert completed_at_return == 0
    assert result.recommendations


def test_repeat_request_served_from_cache(make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(ML_PICKS)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)
    request = RecommendationRequest(location_id="heybo-raffles", allergens=["fish"])

    async def scenario():
        first = await coordinator.resolve(request)
        second = await coordinator.resolve(request)
        return first, second

    first, second = asyncio.run(scenario())
    assert second is first
    assert primary.calls == 1
    assert coordinator.stats()["hits"] == 1


def test_every_tier_failing_serves_emergency(make_personalization, make_catalog, engine_config, fast_clock):
    primary = make_personalization(error=UpstreamFailure("model offline"))
    catalog = make_catalog(
        cached=[KAMPONG], popular=[KAMPONG], signature=[KAMPONG],
        failing={"cached", "popular", "signature"},
    )
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)

    result = asyncio.run(coordinator.resolve(RecommendationRequest(location_id="heybo-raffles")))

    assert result.source is RecommendationSource.emergency
    assert result.fallback_used is True
    assert len(result.recommendations) >= 1
    assert result.confidence == pytest.approx(0.3)


@pytest.mark.parametrize(
    "stub_kwargs",
    [
        {"error": RuntimeError("connection reset")},
        {"candidates": []},
        {"hang": True},
    ],
    ids=["error", "empty", "hang"],
)
def test_primary_problems_always_resolve(stub_kwargs, make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(**stub_kwargs)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)

    async def scenario():
        result = await coordinator.resolve(RecommendationRequest(location_id="heybo-raffles"))
        await coordinator.aclose()
        return result

    result = asyncio.run(scenario())
    assert result.fallback_used is True
    assert result.source is RecommendationSource.popular
    assert result.recommendations
    assert 0.0 <= result.confidence <= 1.0


def test_primary_results_all_filtered_fall_back(make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(_candidates((SHIBUYA, 0.95)))
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)

    result = asyncio.run(coordinator.resolve({"location_id": "heybo-raffles", "allergens": ["fish"]}))

    assert result.source is RecommendationSource.popular
    assert all("signature-3" != c.bowl.id for c in result.recommendations)


def test_concurrent_identical_requests_share_one_resolution(
    make_personalization, catalog, engine_config, fast_clock
):
    primary = make_personalization(ML_PICKS, clock=fast_clock, delay_s=0.5)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)
    request = RecommendationRequest(location_id="heybo-raffles", user_id="guest-7")

    async def scenario():
        return await asyncio.gather(*(coordinator.resolve(request) for _ in range(10)))

    results = asyncio.run(scenario())
    assert primary.calls == 1
    assert all(r is results[0] for r in results)
    assert results[0].source is RecommendationSource.ml
    assert coordinator.stats()["coalesced"] == 9
    assert len(coordinator.in_flight) == 0

    events = coordinator.events.events()
    assert len(events) == 10
    assert sum(1 for e in events if e["coalesced"]) == 9
    assert not any(e["cache_hit"] for e in events)


def test_late_primary_result_warms_cache(make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(ML_PICKS, clock=fast_clock, delay_s=4.0)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)
    request = RecommendationRequest(location_id="heybo-raffles")

    async def scenario():
        first = await coordinator.resolve(request)
        await fast_clock.sleep(3.0)
        second = await coordinator.resolve(request)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.fallback_used is True
    assert second.source is RecommendationSource.ml
    assert primary.calls == 1
    assert len(coordinator.history) == 1


def test_late_primary_warming_can_be_disabled(make_personalization, catalog, engine_config, fast_clock):
    from dataclasses import replace

    config = replace(engine_config, warm_cache_from_late_primary=False)
    primary = make_personalization(ML_PICKS, clock=fast_clock, delay_s=4.0)
    coordinator = _coordinator(primary, catalog, config, fast_clock)
    request = RecommendationRequest(location_id="heybo-raffles")

    async def scenario():
        first = await coordinator.resolve(request)
        await fast_clock.sleep(3.0)
        second = await coordinator.resolve(request)
        return first, second

    first, second = asyncio.run(scenario())
    assert second is first
    assert second.fallback_used is True


@pytest.mark.parametrize(
    "payload",
    [
        {"location_id": "heybo-raffles", "limit": 0},
        {"location_id": "heybo-raffles", "allergens": ["pollen"]},
        {"location_id": ""},
        {"location_id": "heybo-raffles", "mood": "hungry"},
        {},
    ],
)
def test_malformed_requests_raise(payload, make_personalization, catalog, engine_config, fast_clock):
    coordinator = _coordinator(make_personalization(ML_PICKS), catalog, engine_config, fast_clock)
    with pytest.raises(InvalidRequestError):
        asyncio.run(coordinator.resolve(payload))


def test_unsupported_request_type_raises(make_personalization, catalog, engine_config, fast_clock):
    coordinator = _coordinator(make_personalization(ML_PICKS), catalog, engine_config, fast_clock)
    with pytest.raises(InvalidRequestError):
        asyncio.run(coordinator.resolve("heybo-raffles"))


def test_limit_applies_to_results(make_personalization, catalog, engine_config, fast_clock):
    coordinator = _coordinator(make_personalization(ML_PICKS), catalog, engine_config, fast_clock)
    result = asyncio.run(coordinator.resolve({"location_id": "heybo-raffles", "limit": 2}))
    assert [c.bowl.id for c in result.recommendations] == ["signature-4", "signature-5"]


def test_resolutions_are_recorded_as_events(make_personalization, catalog, engine_config, fast_clock):
    coordinator = _coordinator(make_personalization(ML_PICKS), catalog, engine_config, fast_clock)
    request = RecommendationRequest(location_id="heybo-raffles")

    async def scenario():
        await coordinator.resolve(request)
        await coordinator.resolve(request)

    asyncio.run(scenario())
    events = coordinator.events.events()
    assert [e["cache_hit"] for e in events] == [False, True]
    assert events[0]["source"] == "ml"


def test_health_tracks_recent_primary_outcomes(make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(ML_PICKS)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)

    async def scenario():
        statuses = [(await coordinator.personalization_health()).status]
        await coordinator.resolve(RecommendationRequest(location_id="a"))
        primary.error = UpstreamFailure("model offline")
        await coordinator.resolve(RecommendationRequest(location_id="b"))
        statuses.append((await coordinator.personalization_health()).status)
        for location_id in ("c", "d"):
            await coordinator.resolve(RecommendationRequest(location_id=location_id))
        statuses.append((await coordinator.personalization_health()).status)
        fresh = _coordinator(primary, catalog, engine_config, fast_clock)
        await fresh.resolve(RecommendationRequest(location_id="e"))
        statuses.append((await fresh.personalization_health()).status)
        return statuses

    assert asyncio.run(scenario()) == [
        HealthStatus.healthy, HealthStatus.degraded, HealthStatus.degraded, HealthStatus.down,
    ]


def test_health_uses_provider_health_check(make_catalog, engine_config, fast_clock):
    class CheckedProvider:
        async def recommend(self, request):
            return []

        async def health_check(self):
            return PersonalizationHealth(status=HealthStatus.healthy, details="model listed")

    class BrokenCheck(CheckedProvider):
        async def health_check(self):
            raise UpstreamFailure("401 unauthorized")

    healthy = _coordinator(CheckedProvider(), make_catalog(), engine_config, fast_clock)
    broken = _coordinator(BrokenCheck(), make_catalog(), engine_config, fast_clock)

    assert asyncio.run(healthy.personalization_health()).details == "model listed"
    assert asyncio.run(broken.personalization_health()).status is HealthStatus.down


def test_aclose_cancels_detached_calls(make_personalization, catalog, engine_config, fast_clock):
    primary = make_personalization(hang=True)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)

    async def scenario():
        await coordinator.resolve(RecommendationRequest(location_id="heybo-raffles"))
        detached = coordinator.stats()["detached_primary_calls"]
        await coordinator.aclose()
        return detached

    assert asyncio.run(scenario()) == 1
    assert coordinator.stats()["detached_primary_calls"] == 0
    assert primary.closed is True


def test_prefilled_cache_entry_returned_without_any_upstream_call(
    make_personalization, catalog, engine_config, fast_clock
):
    primary = make_personalization(ML_PICKS)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)
    request = RecommendationRequest(location_id="heybo-raffles", dietary_restrictions=["vegetarian"])
    stored = RecommendationResult(
        recommendations=_candidates((GARDEN_TOFU, 0.7)),
        source=RecommendationSource.cached,
        confidence=0.70,
        fallback_used=True,
    )
    coordinator.cache.set(CacheKey.from_request(request), stored, 60_000)

    result = asyncio.run(coordinator.resolve(request))

    assert result is stored
    assert primary.calls == 0
    assert sum(catalog.calls.values()) == 0


def test_cancelled_waiter_does_not_cancel_shared_resolution(
    make_personalization, catalog, engine_config, fast_clock
):
    primary = make_personalization(ML_PICKS, clock=fast_clock, delay_s=0.5)
    coordinator = _coordinator(primary, catalog, engine_config, fast_clock)
    request = RecommendationRequest(location_id="heybo-raffles")

    async def scenario():
        first = asyncio.ensure_future(coordinator.resolve(request))
        second = asyncio.ensure_future(coordinator.resolve(request))
        while coordinator.in_flight.coalesced < 1:
            await asyncio.sleep(0)
        first.cancel()
        result = await second
        await asyncio.gather(first, return_exceptions=True)
        return first, result

    first, result = asyncio.run(scenario())
    assert first.cancelled()
    assert result.source is RecommendationSource.ml
    assert primary.calls == 1
    assert coordinator.cache.get(CacheKey.from_request(request)) is result
