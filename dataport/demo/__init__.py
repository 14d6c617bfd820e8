"""Bookshelf demo for the dataport export runner.

This package provides a demo connector for a small reading-tracker site
("Bookshelf") and an in-process simulation of that site's browser-side
operations. Together they exercise every part of a run: login detection,
identity resolution, tiered extraction (API, captured network response,
DOM), paginated collection with dedup, batched detail fetches and an
infinite-scroll feed.
"""
