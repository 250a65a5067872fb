"""
Logging for the funding core.

Every module logs through ``logging.getLogger(__name__)``; ``setup_logging``
routes those records through structlog so deposit, bridge and withdrawal lines
carry the owner, wallet and network they belong to. JSON lines in production,
a console renderer at DEBUG.
"""

import logging
import sys
from typing import List, Optional

import structlog

from .config import settings

NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "hpack")


def _add_network(network: str) -> structlog.types.Processor:
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("network", network)
        return event_dict

    return processor


def _pipeline_processors(network: str) -> List[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_network(network),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(log_level: Optional[str] = None, *, testnet: Optional[bool] = None) -> None:
    """Install the structlog formatter on the root logger.

    Args:
        log_level: Override for ``settings.log_level``.
        testnet: Override for ``settings.testnet_mode``; stamped on every line as ``network``.
    """
    level = logging.getLevelName((log_level or settings.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO
    network = "testnet" if (settings.testnet_mode if testnet is None else testnet) else "mainnet"

    processors = _pipeline_processors(network)
    if level == logging.DEBUG:
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(sort_keys=True)

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_owner(owner_id: str) -> None:
    """Attach the owning user id to every log line emitted by the current task."""
    structlog.contextvars.bind_contextvars(owner_id=owner_id)


def bind_wallet(address: str, chain: str) -> None:
    structlog.contextvars.bind_contextvars(wallet=address, chain=chain)
