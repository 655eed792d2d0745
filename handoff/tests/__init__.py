"""Test suite for the Handoff fulfillment system.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - No I/O, fast execution
   - Driven by a settable clock and in-memory ports

2. adapters/: Tests for adapter implementations
   - Stores, notifiers, scheduler, webhook and CLI surfaces
   - Validates translation between core models and external formats

3. fakes/: Port implementations and helpers for testing
"""
