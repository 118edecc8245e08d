"""
Test suite for schemasync.

Unit tests live in tests/unit and run without a database; connections
are mocked with AsyncMock.
"""
