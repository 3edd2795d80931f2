"""
NAT Traversal Module
====================

UDP hole punching по двум кандидатам:
- Handshake: однобайтовый автомат PROBING -> ACKNOWLEDGING -> ESTABLISHED
- Transport: один UDP сокет на общем порту для обоих кандидатов
- Hole Punch: гонка local/public кандидатов с дедлайном и выбором победителя

[CANDIDATES]
1. Local: адрес пира в той же локальной сети
2. Public: адрес пира снаружи NAT (из rendezvous)

[PRIORITY]
При одновременной сходимости побеждает local.
"""

from .exceptions import PunchError, MalformedMessageError, UnknownStateError, TransportError
from .handshake import (
    HandshakeState,
    Endpoint,
    CandidateSession,
    encode_state,
    decode_state,
)
from .transport import DatagramTransport, UDPTransport
from .hole_punch import (
    CandidateRace,
    ConvergenceResult,
    DualCandidatePuncher,
    HandshakeStats,
    establish,
    establish_blocking,
    establish_connection,
)

__all__ = [
    # Errors
    "PunchError",
    "MalformedMessageError",
    "UnknownStateError",
    "TransportError",
    # Handshake
    "HandshakeState",
    "Endpoint",
    "CandidateSession",
    "encode_state",
    "decode_state",
    # Transport
    "DatagramTransport",
    "UDPTransport",
    # Hole Punch
    "CandidateRace",
    "ConvergenceResult",
    "DualCandidatePuncher",
    "HandshakeStats",
    "establish",
    "establish_blocking",
    "establish_connection",
]
