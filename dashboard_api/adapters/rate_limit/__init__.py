"""Rate limiting adapters.

The HTTP layer talks to limiters through a small interface so the in-memory
store can later be replaced by a shared one (e.g., Redis with atomic
increment-with-expiry) without touching the middleware.
"""
