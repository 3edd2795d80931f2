"""
Datagram Transport - общий UDP сокет для обоих кандидатов
=========================================================

[TRANSPORT] Один сокет, привязанный к фиксированному порту:
- send(data, endpoint): отправить датаграмму
- receive(): дождаться следующей датаграммы -> (data, source)

Сокет неблокирующий, ввод-вывод через loop.sock_sendto/sock_recvfrom.
"""

import asyncio
import socket
import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .exceptions import TransportError
from .handshake import Endpoint

logger = logging.getLogger(__name__)


def address_family(host: str) -> socket.AddressFamily:
    """Семейство сокета для адреса bind (IPv6 литерал -> AF_INET6)."""
    return socket.AF_INET6 if ":" in host else socket.AF_INET


class DatagramTransport(ABC):
    """Интерфейс транспорта, которым пользуется handshake."""

    @abstractmethod
    async def send(self, data: bytes, endpoint: Endpoint) -> None:
        ...

    @abstractmethod
    async def receive(self) -> Tuple[bytes, Endpoint]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @property
    @abstractmethod
    def local_address(self) -> Optional[Tuple[str, int]]:
        ...


class UDPTransport(DatagramTransport):
    """
    UDP транспорт поверх неблокирующего сокета.

    [USAGE]
    ```python
    transport = UDPTransport.bind(7777)
    try:
        await transport.send(b"\\x00", Endpoint("203.0.113.1", 7777))
        data, source = await transport.receive()
    finally:
        transport.close()
    ```
    """

    def __init__(self, sock: socket.socket, buffer_size: int = 2048):
        self.sock = sock
        self.buffer_size = buffer_size
        self._closed = False

    @classmethod
    def bind(
        cls,
        port: int,
        host: str = "0.0.0.0",
        reuse_address: bool = True,
        buffer_size: int = 2048,
    ) -> "UDPTransport":
        """
        Создать сокет и привязать его к (host, port).

        Raises:
            TransportError: bind не удался
        """
        family = address_family(host)
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.setblocking(False)
            if reuse_address:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise TransportError(f"Cannot bind UDP socket to {host}:{port}: {e}") from e

        logger.debug(f"[PUNCH] UDP socket bound to {sock.getsockname()}")
        return cls(sock, buffer_size)

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        if self._closed:
            return None
        name = self.sock.getsockname()
        return (name[0], name[1])

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, data: bytes, endpoint: Endpoint) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendto(self.sock, data, endpoint.as_tuple())
        except OSError as e:
            raise TransportError(f"Send to {endpoint} failed: {e}") from e

    async def receive(self) -> Tuple[bytes, Endpoint]:
        loop = asyncio.get_running_loop()
        while True:
            try:
                data, addr = await loop.sock_recvfrom(self.sock, self.buffer_size)
            except ConnectionResetError as e:
                # Windows reports ICMP port unreachable from an earlier send here
                logger.debug(f"[PUNCH] Ignoring ICMP reset on receive: {e}")
                continue
            except OSError as e:
                raise TransportError(f"Receive failed: {e}") from e
            return data, Endpoint.from_tuple(addr)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.sock.close()
        logger.debug("[PUNCH] UDP socket closed")
