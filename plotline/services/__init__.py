"""Upstream clients and the orchestration built on top of them."""
