"""
Portfolio API — Application Package Initializer
================================================

What: Marks the `portfolio_api` directory as a Python package.
Who:  Used by uvicorn (`portfolio_api.main:app`), pytest and the route modules.

Architecture Note:

    ┌─────────────────────────────────────────────┐
    │     Host (FastAPI catch-all → Driver)       │  ← ASGI, lifespan
    ├─────────────────────────────────────────────┤
    │  Core: Envelope → Middleware Chain → Router │  ← request pipeline
    ├─────────────────────────────────────────────┤
    │  Routes (controllers, health)               │  ← handler contract
    ├─────────────────────────────────────────────┤
    │  Services (contact, email, rate limiter)    │  ← business logic, I/O
    ├─────────────────────────────────────────────┤
    │  Models & Schemas, Database                 │  ← SQLAlchemy + Pydantic
    └─────────────────────────────────────────────┘

    The core only knows the handler contract: a callable receiving the path
    parameters positionally and returning a JSON-serializable value.
"""

__version__ = "1.0.0"
