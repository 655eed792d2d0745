"""Unit tests for core domain logic.

These tests exercise the state machine, SLA engine, admission control
and refund workflow without external dependencies. Time is driven by
FakeClock and events are captured by FakeNotificationPort.
"""
