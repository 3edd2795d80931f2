"""
Candidate Handshake - конечный автомат для одного кандидата
===========================================================

[PROTOCOL] Однобайтовый протокол поверх UDP:
- 0 = PROBING: "я тебя ищу"
- 1 = ACKNOWLEDGING: "я тебя слышу"
- 2 = ESTABLISHED: "мы друг друга слышим"

[TRANSITIONS] На каждое входящее сообщение R:
1. Сразу отвечаем: PROBING -> ACKNOWLEDGING, ACKNOWLEDGING -> ESTABLISHED,
   ESTABLISHED -> ESTABLISHED (повторный ack, пир мог не увидеть наш)
2. remote_state = R (всегда, даже если не изменилось)
3. Любое сообщение доказывает достижимость: PROBING -> ACKNOWLEDGING
4. Пир в ACKNOWLEDGING/ESTABLISHED видит нас: -> ESTABLISHED
5. local_state никогда не откатывается назад

[CONVERGENCE] Каждый pulse повторяет текущее состояние, каждый ответ
идемпотентен, поэтому потеря и дублирование пакетов не мешают сходимости.
"""

import ipaddress
import logging
import socket
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from .exceptions import MalformedMessageError, UnknownStateError

if TYPE_CHECKING:
    from duopunch.events import EventBus
    from .transport import DatagramTransport

logger = logging.getLogger(__name__)


class HandshakeState(IntEnum):
    """Состояние handshake. Упорядочено: ESTABLISHED доминирует."""
    PROBING = 0
    ACKNOWLEDGING = 1
    ESTABLISHED = 2


# Ответ на каждое полученное состояние пира
REPLIES: Dict[HandshakeState, HandshakeState] = {
    HandshakeState.PROBING: HandshakeState.ACKNOWLEDGING,
    HandshakeState.ACKNOWLEDGING: HandshakeState.ESTABLISHED,
    HandshakeState.ESTABLISHED: HandshakeState.ESTABLISHED,
}


def encode_state(state: HandshakeState) -> bytes:
    """Закодировать состояние в однобайтовое сообщение."""
    return bytes([int(state)])


def decode_state(payload: bytes) -> HandshakeState:
    """
    Декодировать однобайтовое сообщение.

    Raises:
        MalformedMessageError: длина payload не равна 1
        UnknownStateError: байт вне {0, 1, 2}
    """
    if len(payload) != 1:
        raise MalformedMessageError(len(payload))
    value = payload[0]
    try:
        return HandshakeState(value)
    except ValueError:
        raise UnknownStateError(value) from None


@dataclass(frozen=True)
class Endpoint:
    """Адрес кандидата (host, port)."""

    host: str
    port: int

    @classmethod
    def parse(cls, address: str, port: int) -> "Endpoint":
        """Проверить IP-литерал и порт пира, нормализовать запись адреса."""
        host = str(ipaddress.ip_address(address))
        if not 1 <= port <= 65535:
            raise ValueError(f"Port out of range: {port}")
        return cls(host, port)

    @property
    def family(self) -> socket.AddressFamily:
        """AF_INET или AF_INET6 по IP-литералу."""
        if ipaddress.ip_address(self.host).version == 6:
            return socket.AF_INET6
        return socket.AF_INET

    @classmethod
    def from_tuple(cls, addr: Tuple[Any, ...]) -> "Endpoint":
        # IPv6 sockets return (host, port, flowinfo, scope_id)
        return cls(str(addr[0]), int(addr[1]))

    def as_tuple(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def matches(self, other: "Endpoint") -> bool:
        """
        Ослабленное сравнение для маршрутизации.

        [NAT] NAT может переназначить исходящий порт, поэтому совпадения
        адреса достаточно.
        """
        return self == other or self.host == other.host

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class CandidateSession:
    """
    Handshake с одним кандидатом (local или public).

    Сессии разделяют только транспорт; состояние у каждой своё.
    """

    def __init__(
        self,
        transport: "DatagramTransport",
        endpoint: Endpoint,
        label: str = "",
        events: Optional["EventBus"] = None,
    ):
        """
        Args:
            transport: Общий UDP транспорт
            endpoint: Адрес кандидата
            label: Имя кандидата для логов ("local" / "public")
            events: Шина событий для наблюдения за handshake
        """
        self.transport = transport
        self.endpoint = endpoint
        self.label = label or str(endpoint)
        self.events = events
        self.local_state = HandshakeState.PROBING
        self.remote_state = HandshakeState.PROBING

    def is_connected(self) -> bool:
        """Сошлись только если обе стороны подтвердили ESTABLISHED."""
        return (
            self.local_state == HandshakeState.ESTABLISHED
            and self.remote_state == HandshakeState.ESTABLISHED
        )

    def matches(self, source: Endpoint) -> bool:
        return self.endpoint.matches(source)

    async def pulse(self) -> None:
        """Повторно отправить текущее local_state кандидату."""
        await self.send_state(self.local_state)

    async def send_state(self, state: HandshakeState) -> None:
        await self.transport.send(encode_state(state), self.endpoint)
        logger.debug(f"[PUNCH] Sending {state.name} to {self.endpoint} ({self.label})")
        self._emit("punch.sent", state=state.name)

    async def handle_message(self, payload: bytes) -> Optional[HandshakeState]:
        """
        Обработать одно входящее сообщение.

        Returns:
            Отправленный ответ или None, если сообщение отброшено

        Raises:
            UnknownStateError: байт вне известных состояний
        """
        try:
            remote = decode_state(payload)
        except MalformedMessageError as e:
            logger.warning(f"[PUNCH] Dropping malformed message from {self.endpoint}: {e}")
            self._emit("punch.malformed", length=e.length)
            return None

        logger.debug(
            f"[PUNCH] Received {remote.name} from {self.endpoint} "
            f"while we are {self.local_state.name}"
        )
        self._emit("punch.received", state=remote.name)

        # Ответ до изменения собственного состояния
        reply = REPLIES[remote]
        await self.send_state(reply)

        self.remote_state = remote

        if self.local_state == HandshakeState.PROBING:
            self._advance(HandshakeState.ACKNOWLEDGING)

        if self.remote_state in (HandshakeState.ACKNOWLEDGING, HandshakeState.ESTABLISHED):
            self._advance(HandshakeState.ESTABLISHED)

        return reply

    def _advance(self, new_state: HandshakeState) -> None:
        if new_state <= self.local_state:
            return
        logger.info(
            f"[PUNCH] {self.label} {self.endpoint}: "
            f"{self.local_state.name} => {new_state.name}"
        )
        previous = self.local_state
        self.local_state = new_state
        self._emit("punch.state", previous=previous.name, state=new_state.name)

    def _emit(self, event_name: str, **payload: Any) -> None:
        if self.events is None:
            return
        payload.update(candidate=self.label, endpoint=str(self.endpoint))
        self.events.emit(event_name, payload)

    def __repr__(self) -> str:
        return (
            f"CandidateSession({self.label}, {self.endpoint}, "
            f"local={self.local_state.name}, remote={self.remote_state.name})"
        )
