"""
Recommendation resolution engine.

Responsibilities:
- Race the personalization provider against a hard deadline.
- Fall back through cached, popular, signature and emergency tiers.
- Coalesce concurrent identical requests and cache results with a TTL.
- Filter every candidate list for allergens and dietary restrictions.
"""
