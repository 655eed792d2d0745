"""Order store adapters for persistence and querying.

Implementations support multiple backends:
- In-memory (tests, demos and single-process runs)
- SQLite (zero-config, single-file)
"""
