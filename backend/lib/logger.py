"""
Logging setup for the pipeline API

Console logging with:
- Color-coded levels (when attached to a terminal)
- Per-component icons for the three stages, the message bus and the oracle
- Structured key/value payloads appended to messages
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[90m'

    LEVELS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }

    SECTION = '\033[94m'
    KEY = '\033[93m'


class ColoredFormatter(logging.Formatter):
    """Formatter that tags each line with a component icon and a colored level."""

    LEVEL_ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed by the last component of the logger name
    COMPONENT_ICONS = {
        'content_stage': '📚',
        'assessment_stage': '❓',
        'evaluation_stage': '📝',
        'message_bus': '📨',
        'oracle': '🤖',
        'orchestrator': '🧭',
        'store': '💾',
        'auth': '🔐',
        'main': '🌐',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        component = record.name.split('.')[-1]
        icon = self.COMPONENT_ICONS.get(component, self.LEVEL_ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level = f"{Colors.LEVELS.get(record.levelname, '')}{record.levelname:8s}{Colors.RESET}"
            line = (
                f"{Colors.DIM}[{timestamp}]{Colors.RESET} {icon} {level} "
                f"{Colors.BOLD}{record.name}{Colors.RESET} | {record.getMessage()}"
            )
        else:
            line = f"[{timestamp}] {icon} {record.levelname:8s} {record.name} | {record.getMessage()}"

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


class StructuredLogger:
    """Thin wrapper adding key/value payloads and request/response helpers."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    @staticmethod
    def _format_data(data: Dict[str, Any]) -> str:
        return "  " + "\n  ".join(f"{key}: {value}" for key, value in data.items())

    def _log(self, level: int, message: str, data: Optional[Dict[str, Any]] = None, **kwargs):
        if data:
            message = f"{message}\n{self._format_data(data)}"
        self.logger.log(level, message, **kwargs)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a visually separated heading."""
        separator = "=" * 60
        self._log(logging.INFO, f"\n{separator}\n📋 {title.upper()}\n{separator}", data)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, data)

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        if error:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self._log(logging.ERROR, message, data, exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, f"✅ {message}", data)

    def request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None):
        """Log an incoming request."""
        self._log(logging.INFO, f"📥 REQUEST: {method} {path}", data)

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        """Log an outgoing response with its duration."""
        timing = f" ({duration * 1000:.2f} ms)" if duration is not None else ""
        level = logging.INFO if status < 400 else logging.WARNING
        self._log(level, f"📤 RESPONSE: {status} {path}{timing}", data)


def setup_logging(level: int = logging.INFO, use_colors: bool = True) -> logging.Logger:
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
