"""
School Kernel -- shared foundation for the school automation engine.

Provides:
- Structured JSON logging with request/run-scoped context
- Typed exception hierarchy with machine-readable codes
- Injectable clock (no direct datetime.now() in domain code)
- SQLAlchemy declarative base, engine/session management and ORM models
  for the school records the automation jobs read and write
"""

__version__ = "0.1.0"
