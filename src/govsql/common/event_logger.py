import hashlib
import logging
import json
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from govsql.common.settings import settings

AUDIT_LOGGER = "govsql.audit"


class EventLogger:
    """Persistent audit logger for governance decisions.

    Writes structured JSON events to a dedicated log file, separate from
    application debug logs. Every terminal engine outcome is recorded here,
    including the internal details (missing modules, violated rules) that the
    user-facing rendering deliberately omits.

    Each audit file gets its own child of the ``govsql.audit`` logger, so two
    instances pointed at different files never write into each other's file.
    """

    def __init__(self, log_path: Optional[str] = None):
        self._log_path = log_path

    @property
    def log_path(self) -> str:
        """The configured path, or the settings path at the time of the call."""
        return os.path.abspath(self._log_path or settings.audit_log_path)

    def _ensure_handler(self) -> logging.Logger:
        log_path = self.log_path
        digest = hashlib.sha1(log_path.encode("utf-8")).hexdigest()[:12]
        logger = logging.getLogger(f"{AUDIT_LOGGER}.{digest}")
        logger.setLevel(logging.INFO)
        logger.propagate = False

        for handler in logger.handlers:
            if isinstance(handler, RotatingFileHandler) and handler.baseFilename == log_path:
                return logger

        os.makedirs(os.path.dirname(log_path), exist_ok=True)
        # 10MB per file, max 5 backup files
        handler = RotatingFileHandler(
            log_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        return logger

    def log_event(
        self,
        event_type: str,
        payload: Dict[str, Any],
        trace_id: Optional[str] = None,
        tenant_id: Optional[str] = None
    ):
        """Logs a structured event to the audit log.

        Args:
            event_type: Category of event (e.g., 'authorization_denied', 'artifact_emitted')
            payload: The event data dictionary.
            trace_id: Correlation ID.
            tenant_id: Tenant/Customer ID.
        """
        logger = self._ensure_handler()

        sensitive_keys = {"api_key", "password", "secret", "authorization", "token"}
        cleaned_payload = self._redact(payload, sensitive_keys)

        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "trace_id": trace_id,
            "tenant_id": tenant_id,
            "data": cleaned_payload
        }

        logger.info(json.dumps(event, default=str))

    def _redact(self, data: Any, keys_to_redact: set) -> Any:
        """Recursively redact sensitive keys from dictionary.

        Args:
            data: Input data (dict, list, or primitive).
            keys_to_redact: Set of lowercase keys to match and redact.

        Returns:
            The sanitized data structure with sensitive values replaced by '***REDACTED***'.
        """
        if isinstance(data, dict):
            return {
                k: ("***REDACTED***" if str(k).lower() in keys_to_redact else self._redact(v, keys_to_redact))
                for k, v in data.items()
            }
        elif isinstance(data, (list, tuple)):
            return [self._redact(item, keys_to_redact) for item in data]
        else:
            return data


event_logger = EventLogger()
