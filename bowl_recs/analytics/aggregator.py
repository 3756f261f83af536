from __future__ import annotations

from collections import Counter
from typing import Any


def compute_analytics(events: list[dict[str, Any]]) -> dict[str, Any]:
    resolutions = [e for e in events if e["type"] == "resolution"]
    total = len(resolutions)

    # Average response time
    times = [r["response_time_ms"] for r in resolutions if "response_time_ms" in r]
    avg_time = round(sum(times) / len(times), 1) if times else 0.0

    # Provenance of served results
    source_counter: Counter[str] = Counter(r.get("source", "unknown") for r in resolutions)
    source_distribution = {
        source: round(count / total * 100, 1) for source, count in source_counter.items()
    } if total else {}

    fallbacks = sum(1 for r in resolutions if r.get("fallback_used"))

    # Top locations
    loc_counter: Counter[str] = Counter()
    for r in resolutions:
        loc_counter[r.get("location_id", "unknown")] += 1
    top_locations = [{"name": n, "count": c} for n, c in loc_counter.most_common(10)]

    # Dietary restriction and allergen usage
    diet_counter: Counter[str] = Counter()
    allergen_counter: Counter[str] = Counter()
    for r in resolutions:
        for d in r.get("dietary_restrictions", []) or []:
            diet_counter[d] += 1
        for a in r.get("allergens", []) or []:
            allergen_counter[a] += 1

    confidences = [r["confidence"] for r in resolutions if "confidence" in r]
    cache_hits = sum(1 for r in resolutions if r.get("cache_hit"))
    coalesced = sum(1 for r in resolutions if r.get("coalesced"))

    return {
        "total_resolutions": total,
        "avg_response_time_ms": avg_time,
        "avg_confidence": round(sum(confidences) / len(confidences), 3) if confidences else 0.0,
        "source_counts": dict(source_counter),
        "source_distribution": source_distribution,
        "fallback_rate": round(fallbacks / total * 100, 1) if total else 0.0,
        "coalesced_requests": coalesced,
        "top_locations": top_locations,
        "dietary_restriction_usage": dict(diet_counter),
        "allergen_usage": dict(allergen_counter),
        "cache_stats": {
            "hits": cache_hits,
            "misses": total - cache_hits,
            "hit_rate": round(cache_hits / total * 100, 1) if total else 0.0,
        },
    }
