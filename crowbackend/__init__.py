"""
Backend package for the Rate This Crow web app.

This package provides a FastAPI application for rating, ranking and naming
crow photos, with storage abstractions over Postgres (or an in-memory store)
and a double opt-in mailing list.
"""
