#!/usr/bin/env python3
"""
Hole Punch CLI
==============

Ручной запуск handshake с пиром, адреса которого уже известны
(например, получены через rendezvous сервер).

Использование:
    duopunch --local 192.168.1.20 --public 203.0.113.7 --port 7777

Примеры:
    # Оба пира в одной сети, короткий дедлайн
    duopunch --local 192.168.1.20 --public 192.168.1.20 --port 7777 --deadline 3

    # Подробный лог handshake
    duopunch --local 10.0.0.5 --public 198.51.100.2 --port 7777 -v
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from duopunch.config import PunchConfig, load_config
from duopunch.events import EventBus
from duopunch.logger import setup_logging
from duopunch.nat import PunchError, establish_blocking

logger = logging.getLogger(__name__)


def print_transition(payload: Dict[str, Any]) -> None:
    print(f"{payload['candidate']} {payload['endpoint']}: {payload['previous']} -> {payload['state']}")


def build_parser(defaults: PunchConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="duopunch",
        description="UDP hole punch to a peer via its local and public address",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--local", "-l",
        required=True,
        help="Peer address on the local network",
    )
    parser.add_argument(
        "--public", "-P",
        required=True,
        help="Peer public (NAT-mapped) address",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        required=True,
        help="Shared UDP port (bound locally and used on the peer)",
    )
    parser.add_argument(
        "--deadline", "-d",
        type=float,
        default=defaults.deadline,
        help=f"Handshake deadline in seconds (default: {defaults.deadline})",
    )
    parser.add_argument(
        "--interval", "-i",
        type=float,
        default=defaults.pulse_interval,
        help=f"Pulse interval in seconds (default: {defaults.pulse_interval})",
    )
    parser.add_argument(
        "--bind", "-H",
        default=defaults.bind_host,
        help=f"Host to bind to (default: {defaults.bind_host})",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log every sent and received handshake message",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Точка входа CLI. Возвращает код выхода."""
    load_dotenv()
    cfg = load_config()

    args = build_parser(cfg.punch).parse_args(argv)
    setup_logging("DEBUG" if args.verbose else cfg.log_level)

    try:
        settings = PunchConfig(
            deadline=args.deadline,
            pulse_interval=args.interval,
            bind_host=args.bind,
        )
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        return 2

    events = EventBus()
    events.subscribe("punch.state", print_transition)

    try:
        result = establish_blocking(
            args.local,
            args.public,
            args.port,
            settings=settings,
            events=events,
        )
    except ValueError as e:
        logger.error(f"Invalid arguments: {e}")
        return 2
    except PunchError as e:
        logger.error(f"Hole punch failed: {e}")
        return 1

    if result.success:
        print(f"connected {result.candidate} {result.address}:{result.port} in {result.elapsed:.2f}s")
        return 0

    print(f"failed after {result.elapsed:.2f}s ({result.stats.iterations} iterations)")
    return 1


if __name__ == "__main__":
    sys.exit(main())
