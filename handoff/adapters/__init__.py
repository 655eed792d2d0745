"""External adapters for the Handoff fulfillment system.

This package contains all external dependencies (SQLite, httpx, HTTP
servers, etc.) and provides implementations of the core port interfaces.

Adapter Organization:

- store/: Adapters for order, refund and capacity persistence (memory, SQLite)
- notification/: Adapters for emitting domain events (stdout, Markdown, webhook)
- scheduler/: Adapters for driving the SLA tick loop (daemon)
- ingestion/: Order sources feeding the IngestionPort (demo generator)
- cli/: Command-line interface for staff operations
- webhook/: HTTP endpoints for order submission and staff operations
"""
