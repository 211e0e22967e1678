"""Bookstore Marketplace - Backend.

Users browse and favorite books, booksellers list books once an admin has
approved their store, admins moderate everything.

Core concepts:
- Every protected request is authenticated against the *live* user row,
  never against the claims baked into the token.
- Booksellers go through a store approval workflow (pending -> approved/rejected).
- Books belong to exactly one seller; only that seller or an admin may mutate them.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
