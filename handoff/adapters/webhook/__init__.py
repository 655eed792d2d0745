"""Webhook receiver adapters.

Provides HTTP endpoints for external systems to drive Handoff:
- Receive "order submitted" messages from order sources
- Perform staff, runner and ops operations
- Read orders, refunds and capacity
"""
