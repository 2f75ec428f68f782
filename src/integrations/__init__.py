"""
Integrations for external services.

This package contains the upstream feed fetcher that produces the values
the cache stores.
"""
