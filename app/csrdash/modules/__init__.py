"""
Feature modules live under this package.

Each module owns its routes, models and rules, and reuses the platform
primitives (auth, RBAC, audit, DB session, data facade).
"""
