"""Rate limit counter stores.

This package provides a small abstraction layer so the limiter can run on an
in-process counter store in development and on the shared relational store
when several workers must enforce one budget.
"""
