"""
Menu catalog.

Responsibilities:
- Define the ingredient list, signature bowls and emergency bowls.
- Rank best sellers from recent order history.
- Serve the cached, popular and signature fallback tiers.
"""
