"""
API package for the crowdfunding backend.

Modules:
- db: PostgreSQL connection pooling, query helpers, and transactions
- auth_utils: password hashing and JWT auth helpers
- schemas: Pydantic models for the REST API
- funding: deposits and the investment transaction
- metrics: dashboard, summary, and portfolio aggregations
"""
