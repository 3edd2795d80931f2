"""
duopunch Test Configuration
===========================

[QA] Central pytest configuration:
- Unit tests: Isolated, in-memory transport, fast
- Integration tests: Real UDP sockets on loopback

[FIXTURES]
- fake_transport: In-memory DatagramTransport with scripted inbound datagrams
- event_bus: Recording EventBus
- fast_config: PunchConfig with short deadline/interval

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/integration/   # Loopback UDP tests
    pytest --cov=duopunch       # With coverage
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from duopunch.config import PunchConfig
from duopunch.events import EventBus
from duopunch.nat.exceptions import TransportError
from duopunch.nat.handshake import Endpoint
from duopunch.nat.transport import DatagramTransport


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        path = Path(str(item.fspath)).as_posix()
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)


# ============================================================================
# Logging Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# ============================================================================
# Transport Fixtures
# ============================================================================

class FakeTransport(DatagramTransport):
    """
    In-memory transport.

    Inbound datagrams are queued with `inject`; every send is recorded
    in `sent` as (payload, endpoint).
    """

    def __init__(self):
        self.sent: List[Tuple[bytes, Endpoint]] = []
        self.inbound: "asyncio.Queue[Tuple[bytes, Endpoint]]" = asyncio.Queue()
        self.closed = False
        self.close_calls = 0
        self.fail_send: Optional[BaseException] = None

    def inject(self, payload: bytes, source: Endpoint) -> None:
        self.inbound.put_nowait((payload, source))

    async def send(self, data: bytes, endpoint: Endpoint) -> None:
        if self.closed:
            raise TransportError("send on closed transport")
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append((data, endpoint))

    async def receive(self) -> Tuple[bytes, Endpoint]:
        return await self.inbound.get()

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        return None if self.closed else ("0.0.0.0", 7777)

    def sent_to(self, endpoint: Endpoint) -> List[bytes]:
        return [data for data, dest in self.sent if dest == endpoint]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


# ============================================================================
# Events / Config Fixtures
# ============================================================================

class RecordingBus(EventBus):
    """EventBus that also keeps every emitted event."""

    def __init__(self):
        super().__init__()
        self.history: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        self.history.append((event_name, dict(payload)))
        super().emit(event_name, payload)

    def names(self) -> List[str]:
        return [name for name, _ in self.history]


@pytest.fixture
def event_bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def fast_config() -> PunchConfig:
    return PunchConfig(deadline=0.3, pulse_interval=0.02, bind_host="127.0.0.1")
