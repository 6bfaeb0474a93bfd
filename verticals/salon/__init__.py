"""Salon vertical: appointment booking, shop orders, stock and loyalty.

Layers, outermost first:
- FastAPI router with an explicit request context per call
- Orchestration services that run the pure rules in ``domain/`` and
  persist results in one transaction
- Async repositories with salon isolation
- SQLAlchemy models and pydantic schemas
- Stripe payment gateway and Resend e-mail notifier
"""
