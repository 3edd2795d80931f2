"""
Hole Punch Configuration
========================
Централизованная конфигурация для handshake и транспорта.

Значения по умолчанию читаются из окружения (.env загружается в main.py):
    DUOPUNCH_DEADLINE        - максимальное время handshake (секунды)
    DUOPUNCH_PULSE_INTERVAL  - интервал между pulse (секунды)
    DUOPUNCH_BIND_HOST       - адрес для bind UDP сокета
    DUOPUNCH_LOG_LEVEL       - уровень логирования CLI
"""

from dataclasses import dataclass, field

import os


def _env_float(name: str, default: float) -> float:
    """Положительное число из окружения; иначе default."""
    raw = os.getenv(name, "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        return default
    return value if value > 0 else default


# Environment overrides
DEFAULT_DEADLINE: float = _env_float("DUOPUNCH_DEADLINE", 10.0)
DEFAULT_PULSE_INTERVAL: float = _env_float("DUOPUNCH_PULSE_INTERVAL", 0.5)
DEFAULT_BIND_HOST: str = os.getenv("DUOPUNCH_BIND_HOST", "0.0.0.0").strip() or "0.0.0.0"
LOG_LEVEL: str = os.getenv("DUOPUNCH_LOG_LEVEL", "INFO").upper()


@dataclass
class PunchConfig:
    """Настройки hole punching."""

    # Максимальное время на сходимость handshake (секунды)
    deadline: float = DEFAULT_DEADLINE

    # Интервал между pulse обоим кандидатам (секунды)
    pulse_interval: float = DEFAULT_PULSE_INTERVAL

    # Адрес, на котором слушает общий UDP сокет
    bind_host: str = DEFAULT_BIND_HOST

    # Размер буфера для recvfrom. Больше 1 байта, чтобы видеть malformed
    buffer_size: int = 2048

    # SO_REUSEADDR для общего сокета
    reuse_address: bool = True

    def __post_init__(self):
        if self.deadline <= 0:
            raise ValueError(f"deadline must be positive, got {self.deadline}")
        if self.pulse_interval <= 0:
            raise ValueError(f"pulse_interval must be positive, got {self.pulse_interval}")
        if self.buffer_size < 1:
            raise ValueError(f"buffer_size must be at least 1, got {self.buffer_size}")


@dataclass
class Config:
    """Главный конфигурационный класс."""

    punch: PunchConfig = field(default_factory=PunchConfig)
    log_level: str = LOG_LEVEL


# Глобальный экземпляр конфигурации
config = Config()


def load_config() -> Config:
    """Перечитать окружение (например, после load_dotenv)."""
    return Config(
        punch=PunchConfig(
            deadline=_env_float("DUOPUNCH_DEADLINE", 10.0),
            pulse_interval=_env_float("DUOPUNCH_PULSE_INTERVAL", 0.5),
            bind_host=os.getenv("DUOPUNCH_BIND_HOST", "0.0.0.0").strip() or "0.0.0.0",
        ),
        log_level=os.getenv("DUOPUNCH_LOG_LEVEL", "INFO").upper(),
    )
