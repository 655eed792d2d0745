"""Command-line interface adapters.

Provides CLI commands for staff operating a merchant:
- accept / reject / prepare / ready / pickup / deliver / fail: order transitions
- refund / approve-refund / decline-refund: refund workflow
- capacity / set-capacity / store: admission controls
- order / orders / tabs / sla / refunds: read surface
"""
