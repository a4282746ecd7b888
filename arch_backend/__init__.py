"""
Backend package for The Arch.

This package provides a FastAPI application for family groups ("arches"),
their daily questions, feed, get-togethers and direct messages, together
with the scheduled jobs that drive the daily-question lifecycle.
"""
