"""
Resolution analytics.

Responsibilities:
- Record one event per resolved request (source, latency, cache hit).
- Aggregate provenance, fallback rate and filter usage for the admin view.
"""
