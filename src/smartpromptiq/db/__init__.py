"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Repositories for users, token transactions, academy, checkout sessions,
  generations and A/B test events
"""

from smartpromptiq.db.database import get_db, init_db

__all__ = ["get_db", "init_db"]
