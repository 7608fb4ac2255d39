"""
Metered proxy service package.

The service fronts a third-party completion API, enforcing:
- Authentication: a ``service-key`` header registered in Redis
- Accounting: per-user prepaid balances stored in Redis

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.store: Redis key-value store with optimistic transactions.
- app.ledger: Balance reads and atomic credit/debit.
- app.auth: Service credential check.
- app.adapters: HTTP client for the upstream completion API.
"""
