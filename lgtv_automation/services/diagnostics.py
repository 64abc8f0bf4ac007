"""Diagnostic sink for troubleshooting TV communication.

Entries go through the structured logger under the
"lgtv_automation.diagnostics" name, so they land in the JSON log file with
their category and metadata. Storage and export formats are left to the
logging configuration.
"""

import json
import re
from typing import Any

from lgtv_automation.logging_config import get_logger, log_with_context

logger = get_logger("lgtv_automation.diagnostics")

_SECRET_RE = re.compile(r"(client-key|client_key|token|secret|password)", re.IGNORECASE)
_ALWAYS_CAPTURED = ("warning", "error")


def redact(value: Any) -> Any:
    """Replace secret-looking keys (pairing keys, tokens) with a placeholder."""
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if _SECRET_RE.search(str(k)):
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v)
        return out
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


class LoggingDiagnosticSink:
    """Diagnostic sink backed by the structured logger.

    Disabled sinks drop everything. Outside verbose mode only warning and
    error entries are recorded.
    """

    def __init__(self, enabled: bool = False, verbose: bool = False):
        self.enabled = enabled
        self.verbose = verbose

    def log(self, level: str, category: str, message: str, metadata: dict[str, str] | None = None) -> None:
        if not self.enabled:
            return
        if not self.verbose and level.lower() not in _ALWAYS_CAPTURED:
            return

        log_with_context(
            logger,
            level,
            message,
            category=category,
            metadata=metadata or {},
            event_type="diagnostic",
        )

    def capture_payload(self, message_type: str, payload: dict[str, Any]) -> None:
        """Record a raw webOS message; used as the client's diagnostic-capture callback.

        Recorded at info so verbose captures reach the log at the default level.
        """
        self.log(
            "info",
            "webos.payload",
            f"Received {message_type} message",
            metadata={"type": message_type, "payload": json.dumps(redact(payload), sort_keys=True, default=str)},
        )
