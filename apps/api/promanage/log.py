from __future__ import annotations

import logging
import sys

import structlog

from promanage.config import Settings


def setup_logging(cfg: Settings) -> None:
  level = getattr(logging, (cfg.log_level or "INFO").upper(), logging.INFO)
  root = logging.getLogger()
  for handler in root.handlers[:]:
    root.removeHandler(handler)
  handler = logging.StreamHandler(sys.stdout)
  handler.setFormatter(logging.Formatter("%(message)s"))
  root.addHandler(handler)
  root.setLevel(level)

  renderer = structlog.processors.JSONRenderer() if cfg.log_json else structlog.dev.ConsoleRenderer()
  structlog.configure(
    processors=[
      structlog.stdlib.filter_by_level,
      structlog.stdlib.add_logger_name,
      structlog.stdlib.add_log_level,
      structlog.stdlib.PositionalArgumentsFormatter(),
      structlog.processors.TimeStamper(fmt="iso"),
      structlog.processors.StackInfoRenderer(),
      structlog.processors.format_exc_info,
      structlog.processors.UnicodeDecoder(),
      renderer,
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
  )

  logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
  logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
  logging.getLogger("httpx").setLevel(logging.WARNING)
  logging.getLogger("socketio").setLevel(logging.WARNING)
  logging.getLogger("engineio").setLevel(logging.WARNING)
