import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variables for correlation
session_id_var: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
action_var: ContextVar[Optional[str]] = ContextVar('action', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)


class SecretMasker:
    """Masks sensitive information in log messages."""

    def __init__(self):
        self.patterns = [
            # Spotify access/refresh tokens
            r'(?i)(access_token|refresh_token|accessToken|refreshToken)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Client secrets
            r'(?i)(client_secret)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Generic tokens and keys
            r'(?i)(token|key|secret|password|auth)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Authorization headers
            r'(?i)(authorization|bearer)[\s]*[:=]?[\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
            # OAuth codes
            r'(?i)(code|authorization_code)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
        ]

        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text

        def replace_match(match):
            prefix = match.group(1)
            secret = match.group(2)
            if '*' in secret:
                return match.group(0)
            # Keep first 4 and last 4 characters
            if len(secret) > 8:
                masked_secret = secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
            else:
                masked_secret = '*' * len(secret)
            return f"{prefix}: {masked_secret}"

        masked_text = text
        for pattern in self.compiled_patterns:
            masked_text = pattern.sub(replace_match, masked_text)

        return masked_text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in dictionary."""
        if not data:
            return data

        masked_data = {}
        for key, value in data.items():
            if isinstance(value, str):
                masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                    else self.mask_secrets(item) if isinstance(item, str)
                                    else item for item in value]
            else:
                masked_data[key] = value

        return masked_data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        session_id = session_id_var.get()
        action = action_var.get()
        stage = stage_var.get()

        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread': record.threadName,
        }

        # Add correlation fields if available
        if session_id:
            log_entry['sessionId'] = session_id
        if action:
            log_entry['action'] = action
        if stage:
            log_entry['stage'] = stage

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'fields') and record.fields:
            log_entry['fields'] = self.masker.mask_dict(record.fields)

        return json.dumps(log_entry, ensure_ascii=False)

    def mask_secrets(self, text: str) -> str:
        return self.masker.mask_secrets(text)


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, session_id: Optional[str] = None,
                 action: Optional[str] = None,
                 stage: Optional[str] = None):
        self.session_id = session_id
        self.action = action
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        """Set correlation context."""
        if self.session_id is not None:
            self._tokens.append((session_id_var, session_id_var.set(self.session_id)))
        if self.action is not None:
            self._tokens.append((action_var, action_var.set(self.action)))
        if self.stage is not None:
            self._tokens.append((stage_var, stage_var.set(self.stage)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore correlation context."""
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  session_id: Optional[str] = None) -> logging.Logger:
    """Setup structured logging on the package logger."""
    logger = logging.getLogger('playbridge')
    logger.setLevel(getattr(logging, level.upper()))

    logger.handlers.clear()

    formatter = StructuredFormatter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if session_id:
        session_id_var.set(session_id)

    return logger


def get_logger(name: str = 'playbridge') -> logging.Logger:
    """Get logger with structured formatting."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None,
                    exc_info: bool = False, **kwargs):
    """Log message with additional fields."""
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, '', 0, message, (),
        sys.exc_info() if exc_info else None
    )

    merged = dict(fields or {})
    merged.update(kwargs)
    if merged:
        record.fields = merged

    logger.handle(record)


# Convenience functions for common logging patterns
def log_action_start(logger: logging.Logger, verb: str, arguments: Dict[str, Any], **kwargs):
    """Log dispatcher action start."""
    with CorrelationContext(action=verb, stage='start'):
        log_with_fields(logger, 'INFO', 'Action started', {
            'arguments': dict(arguments),
            **kwargs
        })


def log_action_complete(logger: logging.Logger, verb: str, note: Optional[str], **kwargs):
    """Log dispatcher action completion."""
    with CorrelationContext(action=verb, stage='complete'):
        log_with_fields(logger, 'INFO', 'Action completed', {
            'note': note,
            **kwargs
        })


def log_state_update(logger: logging.Logger, flags, context: Optional[str], **kwargs):
    """Log a monitor state emission."""
    with CorrelationContext(stage='state_update'):
        log_with_fields(logger, 'INFO', 'Playback state update emitted', {
            'flags': list(flags),
            'context': context,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
