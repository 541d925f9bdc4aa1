import json
import logging
import re
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

# Context variables for correlation
job_id_var: ContextVar[Optional[str]] = ContextVar('job_id', default=None)
provider_var: ContextVar[Optional[str]] = ContextVar('provider', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

ROOT_LOGGER_NAME = 'playbridge'


_SECRET_PATTERNS = (
    # Authorization headers
    r'(?i)(bearer)\s+([a-zA-Z0-9\-_\.=]{8,})',
    # Provider access tokens from the environment
    r'(?i)([a-z]+_access_token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{8,})["\']?',
    # Generic token/key/secret assignments
    r'(?i)(token|key|secret|password|auth)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
    # Client secrets
    r'(?i)(client_secret)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
)


def _redact(match: re.Match) -> str:
    secret = match.group(2)
    if len(secret) <= 8:
        return f"{match.group(1)}: {'*' * len(secret)}"
    # First and last 4 characters stay readable
    return f"{match.group(1)}: {secret[:4]}{'*' * (len(secret) - 8)}{secret[-4:]}"


class SecretMasker:
    """Masks bearer tokens and credential-looking values in log output."""

    def __init__(self, patterns: Iterable[str] = _SECRET_PATTERNS):
        self.compiled_patterns = [re.compile(pattern) for pattern in patterns]

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(_redact, text)
        return text

    def mask_value(self, value: Any) -> Any:
        """Mask strings anywhere inside nested dicts, lists and tuples."""
        if isinstance(value, str):
            return self.mask_secrets(value)
        if isinstance(value, dict):
            return {key: self.mask_value(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.mask_value(item) for item in value)
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.mask_value(data) if data else data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        job_id = job_id_var.get()
        provider = getattr(record, 'provider', None) or provider_var.get()
        playlist_id = playlist_id_var.get()
        stage = stage_var.get()
        if job_id:
            log_entry['jobId'] = job_id
        if provider:
            log_entry['provider'] = provider
        if playlist_id:
            log_entry['playlistId'] = playlist_id
        if stage:
            log_entry['stage'] = stage

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        fields = getattr(record, 'fields', None)
        if fields:
            log_entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class CorrelationContext:
    """Context manager binding correlation fields to every log line inside it."""

    def __init__(self, job_id: Optional[str] = None,
                 provider: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        self._values = {
            job_id_var: job_id,
            provider_var: provider,
            playlist_id_var: playlist_id,
            stage_var: stage,
        }
        self._tokens = []

    def __enter__(self):
        for var, value in self._values.items():
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None,
                  job_id: Optional[str] = None) -> logging.Logger:
    """Attach the JSON formatter to the package logger."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    formatter = StructuredFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if job_id:
        job_id_var.set(job_id)

    return logger


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, exc_info=False, **kwargs):
    """Log message with additional structured fields."""
    merged = dict(fields or {})
    merged.update(kwargs)
    logger.log(getattr(logging, level.upper()), message,
               extra={'fields': merged} if merged else None, exc_info=exc_info)


def log_job_start(logger: logging.Logger, job_id: str, source_provider: str,
                  dest_provider: str, **kwargs):
    with CorrelationContext(job_id=job_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Job started', {
            'source_provider': source_provider,
            'dest_provider': dest_provider,
            **kwargs
        })


def log_job_complete(logger: logging.Logger, job_id: str, total_tracks: int, **kwargs):
    with CorrelationContext(job_id=job_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Job completed', {
            'total_tracks': total_tracks,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: BaseException, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=(type(error), error, error.__traceback__))
