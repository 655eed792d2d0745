"""Notification adapters for emitting domain events.

The core only emits events (SLA breaches, refund reviews, transitions);
delivery to people is the collaborator's job. Implementations:
- Stdout (terminal pretty-print)
- Markdown file (daily alert log)
- Webhook (HTTP POST to an alerting endpoint)
"""
