"""Scheduler adapters for driving the SLA tick loop.

Implementations:
- Daemon (asyncio event loop with a configurable tick interval)
"""
