"""Test utilities for sluice servers.

    from sluice.testing import RecordingSink, TestClient
"""

from sluice.testing.client import TestClient, TestResponse
from sluice.testing.sink import RecordingSink

__all__ = ["RecordingSink", "TestClient", "TestResponse"]
