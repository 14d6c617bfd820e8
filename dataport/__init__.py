"""
Logged-in data export framework.

This package provides the orchestration core shared by every platform
connector: a worker lifecycle (headed login, headless collection), a
line-delimited JSON control protocol between an orchestrator and the
browser worker, a tiered extraction executor, and a pagination engine
with deduplication and progress reporting.
"""
