"""
Logging Setup - Console logging for the API server
"""

import logging
import sys


class _ThirdPartyNoiseFilter(logging.Filter):
    """Keep our own modules' logs; let other libraries through only at WARNING+."""

    OWN_LOGGERS = (
        'flask_api', 'database', 'task_manager', 'task_validator', 'time_tracker',
        'analytics', 'user_manager', 'verification', 'ai_feedback', 'run_server',
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.split('.')[0] in self.OWN_LOGGERS:
            return True
        return record.levelno >= logging.WARNING


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger. Call once, before the app is created."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(fmt)
    console.addFilter(_ThirdPartyNoiseFilter())
    root.addHandler(console)

    logging.captureWarnings(True)
