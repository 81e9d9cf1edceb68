"""
Tabular Engine Test Suite.

This package contains:
- unit/: Unit tests against a temporary tenant database
- integration/: Invoice workflow through the TabularEngine facade
"""
