"""
Logging configuration for aclgate.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

from .util import mask_sensitive

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

SENSITIVE_FIELDS = ["signature", "password", "pass", "hashedPassword", "token",
                    "accessToken", "refreshToken", "private_key"]


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add request ID if available
        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            result[key] = mask_sensitive(value) if isinstance(value, str) else "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        else:
            result[key] = value
    return result


class AuditLogger:
    """
    Specialized logger for audit events.

    Provides methods for logging token issuance, ACL mutations,
    access decisions and data writes.
    """

    def __init__(self, name: str = "aclgate.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **sanitize_for_logging(kwargs)
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def token_issued(self, alias: str, kind: str) -> None:
        """Log a token issuance."""
        self._log(
            logging.INFO,
            "TOKEN_ISSUED",
            alias=alias,
            kind=kind,
            message=f"{kind} token issued for {alias}"
        )

    def registration(self, alias: str, public_key: str) -> None:
        """Log a completed registration."""
        self._log(
            logging.INFO,
            "REGISTRATION",
            alias=alias,
            public_key=public_key,
            message=f"Registered {alias}"
        )

    def authentication_failed(self, alias: str, reason: str) -> None:
        """Log a failed login or token check."""
        self._log(
            logging.WARNING,
            "AUTHENTICATION_FAILED",
            alias=alias,
            reason=reason,
            message=f"Authentication failed for {alias}: {reason}"
        )

    def acl_changed(self, action: str, path: str, grantee: str, requester: str, outcome: str) -> None:
        """Log a grant or revoke on an ACL record."""
        self._log(
            logging.INFO,
            "ACL_CHANGED",
            action=action,
            path=path,
            grantee=grantee,
            requester=requester,
            outcome=outcome,
            message=f"{action} {grantee} on {path}: {outcome}"
        )

    def access_denied(self, path: str, requester: str) -> None:
        """Log a permission walk that found no matching record."""
        self._log(
            logging.WARNING,
            "ACCESS_DENIED",
            path=path,
            requester=requester,
            message=f"Write access denied on {path}"
        )

    def data_written(self, path: str, cid: str, immutable: bool) -> None:
        """Log a committed data write."""
        self._log(
            logging.INFO,
            "DATA_WRITTEN",
            path=path,
            cid=cid,
            immutable=immutable,
            message=f"Data written at {path}"
        )

    def data_deleted(self, prefix: str, deleted: List[str]) -> None:
        """Log a prefix deletion."""
        self._log(
            logging.INFO,
            "DATA_DELETED",
            prefix=prefix,
            deleted=deleted,
            count=len(deleted),
            message=f"Deleted {len(deleted)} records under {prefix}"
        )

    def notification_failed(self, cid: str, attempts: int, error: str) -> None:
        """Log a failed outbox delivery."""
        self._log(
            logging.WARNING,
            "NOTIFICATION_FAILED",
            cid=cid,
            attempts=attempts,
            error=error,
            message=f"Notification for {cid} failed (attempt {attempts})"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create formatter
    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (if specified)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = AuditLogger()
