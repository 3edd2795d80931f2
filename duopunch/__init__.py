"""
duopunch
========
Прямое P2P соединение через NAT: UDP hole punching по двум кандидатам
(локальный и публичный адрес пира) с однобайтовым handshake.
"""

from .config import Config, PunchConfig, config
from .events import EventBus
from .nat import (
    CandidateSession,
    ConvergenceResult,
    DualCandidatePuncher,
    Endpoint,
    HandshakeState,
    PunchError,
    establish,
    establish_blocking,
    establish_connection,
)

__version__ = "0.1.0"

__all__ = [
    "Config",
    "PunchConfig",
    "config",
    "EventBus",
    "CandidateSession",
    "ConvergenceResult",
    "DualCandidatePuncher",
    "Endpoint",
    "HandshakeState",
    "PunchError",
    "establish",
    "establish_blocking",
    "establish_connection",
]
