"""
Root conftest.py for manual input backend tests.

This file contains shared fixtures and pytest configuration
that applies to all test modules.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import List

import pytest

# Ensure the project root is in the path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# The global config manager is created on import; keep it out of the user's config dir
os.environ["PERFTEST_CONFIG"] = tempfile.mkdtemp(prefix="perftest-config-")
for _name in ("PERFTEST_BACKEND_URL", "PERFTEST_API_TOKEN", "PERFTEST_LOG_LEVEL", "PERFTEST_TIMEZONE"):
    os.environ.pop(_name, None)

from api.backend_client import InputTagsPayload, SaveResult  # noqa: E402
from api.manual_input_service import ManualInputService  # noqa: E402
from api.shared.time_slots import coerce_tags, normalize_existing_inputs  # noqa: E402
from api.shared.types import PerformanceRecord  # noqa: E402
from websocket.manager import Notifier, WebSocketMessage  # noqa: E402


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "websocket: mark test as involving WebSocket communication",
    )
    config.addinivalue_line(
        "markers",
        "api: mark test as going through the FastAPI app",
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark WebSocket and API tests by name."""
    for item in items:
        if "websocket" in item.name.lower() or "websocket" in str(item.fspath):
            item.add_marker(pytest.mark.websocket)
        if str(item.fspath).endswith("_api.py"):
            item.add_marker(pytest.mark.api)


# ============================================================================
# Shared Fixtures
# ============================================================================


class RecordingNotifier(Notifier):
    """Notifier that keeps every message instead of broadcasting it."""

    def __init__(self):
        self.messages: List[WebSocketMessage] = []

    async def notify(self, message: WebSocketMessage) -> None:
        self.messages.append(message)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sample_tags():
    """Input tags as the plant backend sends them for one tab."""
    return [
        {"tag_no": "T1", "description": "Main steam flow", "satuan": "t/h", "jm_input": 4},
        {"tag_no": "T2", "description": "Feedwater temp", "satuan": "degC", "jm_input": 4},
        {"tag_no": "P1", "description": "Drum pressure", "satuan": "bar", "jm_input": None},
    ]


class FakeBackend:
    """In-memory stand-in for the plant backend client.

    Saved records become visible to the next ``get_input_tags`` call.
    """

    def __init__(self):
        self.tags = []
        self.existing = {}
        self.performances = []
        self.tab_names = {}
        self.saved = []
        self.fetches = []
        self.save_error = None
        self.fetch_error = None
        self.save_gate = None
        self.closed = False

    async def get_input_tags(self, datetime, perf_id, m_input=None):
        self.fetches.append((datetime, perf_id, m_input))
        if self.fetch_error is not None:
            raise self.fetch_error
        return InputTagsPayload(
            input_tags=coerce_tags(self.tags),
            existing_inputs=normalize_existing_inputs(self.existing),
        )

    async def save_manual_input(self, records):
        if self.save_gate is not None:
            await self.save_gate.wait()
        if self.save_error is not None:
            raise self.save_error
        self.saved.append(list(records))
        for record in records:
            self.existing[f"{record.tag_no}_{record.date_rec}"] = record.to_dict()
        return SaveResult(
            records_created=len(records),
            total_processed=len(records),
            message="Manual input data saved successfully",
        )

    async def get_performance_records(self):
        return [PerformanceRecord.from_dict(item) for item in self.performances]

    async def get_tab_names(self, perf_id):
        if isinstance(self.tab_names, Exception):
            raise self.tab_names
        return dict(self.tab_names)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_backend(sample_tags):
    backend = FakeBackend()
    backend.tags = list(sample_tags)
    backend.performances = [
        {"perf_id": 42, "description": "Baseline", "date_perfomance": "2024-01-01T08:00"},
        {"perf_id": 43, "description": "Retest", "date_perfomance": None},
    ]
    return backend


@pytest.fixture
def replacement_backend(sample_tags):
    """A second backend, as built after the connection settings change."""
    backend = FakeBackend()
    backend.tags = list(sample_tags)
    return backend


    return backend


@pytest.fixture
def service(fake_backend, notifier):
    return ManualInputService(fake_backend, notifier)
