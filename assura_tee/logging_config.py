"""
Logging configuration for the Assura attestation service.

Provides structured JSON logging and typed audit events.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line, suitable for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Logger for audit events: issuance, verification decisions, bypass
    entries, registrations and security events.
    """

    def __init__(self, name: str = "assura.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
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

    def attestation_issued(
        self,
        user_address: str,
        score: int,
        chain_id: int,
        tee_address: str,
    ) -> None:
        """Log an issued attestation."""
        self._log(
            logging.INFO,
            "ATTESTATION_ISSUED",
            user_address=user_address,
            score=score,
            chain_id=chain_id,
            tee_address=tee_address,
            message=f"Attestation issued for {user_address}"
        )

    def verification_decision(
        self,
        app: str,
        accepted: bool,
        reason: Optional[str] = None,
    ) -> None:
        """Log a verification decision."""
        level = logging.INFO if accepted else logging.WARNING
        self._log(
            level,
            "VERIFICATION_DECISION",
            app=app,
            accepted=accepted,
            reason=reason,
            message=f"Verification {'accepted' if accepted else 'rejected'} for {app}"
        )

    def bypass_entry_created(
        self,
        beneficiary: str,
        resource: str,
        key: str,
        expiry: int,
        nonce: int,
    ) -> None:
        """Log a new bypass entry."""
        self._log(
            logging.INFO,
            "BYPASS_ENTRY_CREATED",
            beneficiary=beneficiary,
            resource=resource,
            key=key,
            expiry=expiry,
            nonce=nonce,
            message=f"Bypass entry {nonce} for {beneficiary} on {resource}"
        )

    def bypass_opened(self, key, entry) -> None:
        """``BypassLedger(on_open=...)`` hook."""
        beneficiary, resource, policy_key = key
        self.bypass_entry_created(
            beneficiary, resource, "0x" + policy_key.hex(), entry.expiry, entry.nonce
        )

    def registration(
        self,
        user_address: str,
        username: str,
        created: bool,
    ) -> None:
        """Log a username registration attempt."""
        self._log(
            logging.INFO,
            "REGISTRATION",
            user_address=user_address,
            username=username,
            created=created,
            message=f"Registration {'created' if created else 'already registered'} for {user_address}"
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
        json_format: Use JSON formatting
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request ID for the current context, generating one if needed."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
