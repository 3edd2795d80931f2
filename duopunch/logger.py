import logging
from typing import Optional

from duopunch.events import EventBus


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class EventBusHandler(logging.Handler):
    """Logging handler that forwards records to an event bus."""

    def __init__(self, bus: EventBus, event_name: str = "activity_log"):
        super().__init__()
        self.bus = bus
        self.event_name = event_name

    def emit(self, record: logging.LogRecord) -> None:
        # bus failures are logged by the bus itself
        if record.name == "duopunch.events":
            return
        try:
            msg = self.format(record)
            self.bus.emit(self.event_name, {"message": msg, "level": record.levelname})
        except Exception:
            self.handleError(record)


def setup_logging(level: str = "INFO", bus: Optional[EventBus] = None) -> None:
    """Configure root logging for the CLI; library code never calls this."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    if bus is None:
        return
    package_logger = logging.getLogger("duopunch")
    for existing in package_logger.handlers:
        if isinstance(existing, EventBusHandler) and existing.bus is bus:
            return
    handler = EventBusHandler(bus)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
