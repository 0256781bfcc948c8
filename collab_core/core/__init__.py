"""
Core modules for collab_core.

This package contains the event vocabulary and reducer, the commit
coordinator, and the metered AI gateway with its pricing, budget and
rate-limit policies.
"""
