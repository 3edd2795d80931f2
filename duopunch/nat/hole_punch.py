"""
Hole Punching - гонка двух кандидатов на одном UDP сокете
=========================================================

[HOLE PUNCH] Принцип работы:
1. Rendezvous уже сообщил обоим узлам local и public адреса друг друга
2. Открываем один UDP сокет на общем порту
3. Каждые pulse_interval отправляем своё состояние обоим кандидатам
4. Входящий пакет направляем кандидату, чей адрес совпал
5. Кто первым сошёлся (ESTABLISHED/ESTABLISHED), тот и победил

[ARBITRATION] Если оба кандидата сошлись в одной итерации,
побеждает local (проверяется первым).

[LIMITATIONS]
- Symmetric NAT: часто не работает (разный mapping для каждого destination)
- За одну итерацию обрабатывается не более одной датаграммы
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from duopunch.config import PunchConfig, config
from duopunch.events import EventBus

from .exceptions import UnknownStateError
from .handshake import CandidateSession, Endpoint
from .transport import DatagramTransport, UDPTransport, address_family

logger = logging.getLogger(__name__)


CompletionCallback = Callable[[str, int, bool], None]
TransportFactory = Callable[[int], DatagramTransport]


@dataclass
class HandshakeStats:
    """Счётчики одного запуска."""
    iterations: int = 0
    pulses_sent: int = 0
    replies_sent: int = 0
    received: int = 0
    malformed: int = 0
    unknown_state: int = 0
    unmatched: int = 0


@dataclass
class ConvergenceResult:
    """Результат hole punch."""
    address: str
    port: int
    success: bool
    candidate: str = ""  # "local" / "public"
    elapsed: float = 0.0
    stats: HandshakeStats = field(default_factory=HandshakeStats)

    @classmethod
    def failed(cls, elapsed: float = 0.0, stats: Optional[HandshakeStats] = None) -> "ConvergenceResult":
        return cls("", 0, False, elapsed=elapsed, stats=stats or HandshakeStats())

    def as_callback_args(self) -> Tuple[str, int, bool]:
        return (self.address, self.port, self.success)


class CandidateRace:
    """
    Ограниченный по времени цикл сходимости двух кандидатов.

    [LOOP]
    pulse(local) -> pulse(public) -> один receive -> маршрутизация ->
    handle_message -> сон до конца интервала

    Обработка датаграммы полностью завершается до следующего pulse,
    поэтому состояние сессий не нужно защищать блокировкой.
    """

    def __init__(
        self,
        transport: DatagramTransport,
        local: CandidateSession,
        public: CandidateSession,
        deadline: float,
        pulse_interval: float,
        events: Optional[EventBus] = None,
    ):
        self.transport = transport
        self.local = local
        self.public = public
        self.deadline = deadline
        self.pulse_interval = pulse_interval
        self.events = events
        self.stats = HandshakeStats()

    @property
    def sessions(self) -> Tuple[CandidateSession, CandidateSession]:
        return (self.local, self.public)

    def converged(self) -> bool:
        return self.local.is_connected() or self.public.is_connected()

    async def run(self) -> ConvergenceResult:
        """
        Крутить цикл до сходимости или дедлайна.

        Raises:
            TransportError: ошибка сокета
        """
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline_at = start + self.deadline

        while loop.time() < deadline_at and not self.converged():
            iteration_start = loop.time()
            self.stats.iterations += 1

            for session in self.sessions:
                await session.pulse()
                self.stats.pulses_sent += 1

            wait = min(self.pulse_interval, deadline_at - loop.time())
            if wait <= 0:
                break

            try:
                data, source = await asyncio.wait_for(self.transport.receive(), timeout=wait)
            except asyncio.TimeoutError:
                # The wait already consumed this iteration's interval
                continue

            await self.dispatch(data, source)

            if self.converged():
                break
            remaining = min(
                self.pulse_interval - (loop.time() - iteration_start),
                deadline_at - loop.time(),
            )
            if remaining > 0:
                await asyncio.sleep(remaining)

        return self.resolve(loop.time() - start)

    async def dispatch(self, payload: bytes, source: Endpoint) -> Optional[CandidateSession]:
        """Передать датаграмму совпавшему кандидату (local проверяется первым)."""
        self.stats.received += 1

        if self.local.matches(source):
            session = self.local
        elif self.public.matches(source):
            session = self.public
        else:
            self.stats.unmatched += 1
            logger.info(
                f"[PUNCH] Endpoint doesn't match: {source} "
                f"local({self.local.endpoint}) public({self.public.endpoint})"
            )
            if self.events is not None:
                self.events.emit("punch.unmatched", {"source": str(source)})
            return None

        try:
            reply = await session.handle_message(payload)
        except UnknownStateError as e:
            self.stats.unknown_state += 1
            logger.warning(f"[PUNCH] Rejected message from {source} ({session.label}): {e}")
            if self.events is not None:
                self.events.emit(
                    "punch.unknown_state",
                    {"candidate": session.label, "source": str(source), "value": e.value},
                )
            return session

        if reply is None:
            self.stats.malformed += 1
        else:
            self.stats.replies_sent += 1
        return session

    def resolve(self, elapsed: float) -> ConvergenceResult:
        """Выбрать победителя: local, затем public, иначе неудача."""
        for session in self.sessions:
            if session.is_connected():
                return ConvergenceResult(
                    address=session.endpoint.host,
                    port=session.endpoint.port,
                    success=True,
                    candidate=session.label,
                    elapsed=elapsed,
                    stats=self.stats,
                )
        return ConvergenceResult.failed(elapsed, self.stats)


class DualCandidatePuncher:
    """
    Hole puncher с двумя кандидатами (local + public) на общем порту.

    [USAGE]
    ```python
    puncher = DualCandidatePuncher()
    result = await puncher.establish(
        "192.168.1.20",
        "203.0.113.7",
        7777,
        on_complete=lambda addr, port, ok: print(addr, port, ok),
    )
    if result.success:
        # Подключаемся к result.address:result.port
        pass
    ```
    """

    def __init__(
        self,
        settings: Optional[PunchConfig] = None,
        events: Optional[EventBus] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """
        Args:
            settings: Настройки (по умолчанию config.punch)
            events: Шина событий для наблюдения
            transport_factory: port -> DatagramTransport (по умолчанию UDP bind)
        """
        self.settings = settings or config.punch
        self.events = events
        self.transport_factory = transport_factory or self._bind_udp

    def _bind_udp(self, port: int) -> DatagramTransport:
        return UDPTransport.bind(
            port,
            host=self.settings.bind_host,
            reuse_address=self.settings.reuse_address,
            buffer_size=self.settings.buffer_size,
        )

    def _check_family(self, *endpoints: Endpoint) -> None:
        """Оба кандидата должны быть достижимы через один сокет."""
        family = address_family(self.settings.bind_host)
        for endpoint in endpoints:
            if endpoint.family != family:
                raise ValueError(
                    f"Candidate {endpoint} does not match the address family "
                    f"of bind host {self.settings.bind_host}"
                )

    async def establish(
        self,
        local_address: str,
        public_address: str,
        port: int,
        on_complete: Optional[CompletionCallback] = None,
        deadline: Optional[float] = None,
        pulse_interval: Optional[float] = None,
    ) -> ConvergenceResult:
        """
        Установить соединение через один из двух кандидатов.

        on_complete вызывается ровно один раз. Таймаут не является
        исключением: он приходит как success=False.

        Args:
            local_address: Адрес пира в локальной сети
            public_address: Публичный (NAT) адрес пира
            port: Общий порт (наш bind и порт пира)
            on_complete: callback(address, port, success)
            deadline: Максимальное время (секунды)
            pulse_interval: Интервал между pulse (секунды)

        Returns:
            ConvergenceResult

        Raises:
            ValueError: неверный адрес, порт, семейство адресов или таймауты
            TransportError: ошибка сокета (callback уже вызван с неудачей)
        """
        local_endpoint = Endpoint.parse(local_address, port)
        public_endpoint = Endpoint.parse(public_address, port)
        deadline = self.settings.deadline if deadline is None else deadline
        pulse_interval = self.settings.pulse_interval if pulse_interval is None else pulse_interval
        if deadline <= 0 or pulse_interval <= 0:
            raise ValueError("deadline and pulse_interval must be positive")
        self._check_family(local_endpoint, public_endpoint)

        logger.info(
            f"[PUNCH] Starting: local={local_endpoint} public={public_endpoint} "
            f"deadline={deadline}s interval={pulse_interval}s"
        )

        try:
            transport = self.transport_factory(port)
            try:
                race = CandidateRace(
                    transport,
                    CandidateSession(transport, local_endpoint, "local", self.events),
                    CandidateSession(transport, public_endpoint, "public", self.events),
                    deadline=deadline,
                    pulse_interval=pulse_interval,
                    events=self.events,
                )
                result = await race.run()
            finally:
                transport.close()
        except Exception as e:
            logger.error(f"[PUNCH] Aborted: {e}")
            self._complete(ConvergenceResult.failed(), on_complete)
            raise

        self._complete(result, on_complete)
        return result

    def _complete(
        self,
        result: ConvergenceResult,
        on_complete: Optional[CompletionCallback],
    ) -> None:
        if result.success:
            logger.info(
                f"[PUNCH] Connected via {result.candidate} "
                f"{result.address}:{result.port} ({result.elapsed:.2f}s)"
            )
        else:
            logger.error("[PUNCH] Failed to connect to peer")

        if self.events is not None:
            self.events.emit("punch.result", {
                "address": result.address,
                "port": result.port,
                "success": result.success,
                "candidate": result.candidate,
            })

        if on_complete is not None:
            on_complete(*result.as_callback_args())


async def establish(
    local_address: str,
    public_address: str,
    port: int,
    on_complete: Optional[CompletionCallback] = None,
    *,
    deadline: Optional[float] = None,
    pulse_interval: Optional[float] = None,
    settings: Optional[PunchConfig] = None,
    events: Optional[EventBus] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> ConvergenceResult:
    """Удобная функция для hole punch по двум кандидатам."""
    puncher = DualCandidatePuncher(settings, events, transport_factory)
    return await puncher.establish(
        local_address,
        public_address,
        port,
        on_complete,
        deadline=deadline,
        pulse_interval=pulse_interval,
    )


def establish_connection(
    local_address: str,
    public_address: str,
    port: int,
    on_complete: Optional[CompletionCallback] = None,
    **kwargs,
) -> "asyncio.Task[ConvergenceResult]":
    """Запустить establish фоновой задачей в текущем event loop."""
    loop = asyncio.get_running_loop()
    return loop.create_task(
        establish(local_address, public_address, port, on_complete, **kwargs)
    )


def establish_blocking(
    local_address: str,
    public_address: str,
    port: int,
    on_complete: Optional[CompletionCallback] = None,
    **kwargs,
) -> ConvergenceResult:
    """Выполнить establish синхронно (для кода без event loop)."""
    return asyncio.run(
        establish(local_address, public_address, port, on_complete, **kwargs)
    )
