"""Tests for adapter implementations.

These tests exercise adapters against real local resources (SQLite
files, temp directories, loopback HTTP) or mocked transports.
"""
