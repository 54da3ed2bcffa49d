"""Diagnostic messages produced while talking to the server."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)

# Server classes above this value are errors, the rest are informational warnings.
ERROR_SEVERITY_THRESHOLD = 10


class MessageSeverity(str, Enum):
    """Severity of a diagnostic message."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ServerError:
    """One discrete error record reported by the server for a batch."""
    message: str
    number: Optional[int] = None
    severity: Optional[int] = None
    state: Optional[int] = None
    line: Optional[int] = None
    procedure: Optional[str] = None

    @property
    def is_error(self) -> bool:
        """Whether the record crosses the error threshold.

        Records without a severity class are treated as errors.
        """
        return self.severity is None or self.severity > ERROR_SEVERITY_THRESHOLD

    def format(self) -> str:
        """Render the record the way query consoles traditionally show it."""
        header = []
        if self.number is not None:
            header.append(f"Msg {self.number}")
        if self.severity is not None:
            header.append(f"Level {self.severity}")
        if self.state is not None:
            header.append(f"State {self.state}")
        if self.procedure:
            header.append(f"Procedure {self.procedure}")
        if self.line is not None:
            header.append(f"Line {self.line}")
        if not header:
            return self.message
        return f"{', '.join(header)}\n{self.message}"


@dataclass
class QueryMessage:
    """One diagnostic unit attached to a query result."""
    text: str
    severity: MessageSeverity = MessageSeverity.INFO
    line_number: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)
    error_number: Optional[int] = None
    error_class: Optional[int] = None
    error_state: Optional[int] = None

    @classmethod
    def from_server_error(cls, error: ServerError) -> "QueryMessage":
        """Build a message from a server error record."""
        return cls(
            text=error.format(),
            severity=MessageSeverity.ERROR if error.is_error else MessageSeverity.WARNING,
            line_number=error.line,
            error_number=error.number,
            error_class=error.severity,
            error_state=error.state,
        )

    def to_dict(self) -> dict:
        return {
            'text': self.text,
            'severity': self.severity.value,
            'line_number': self.line_number,
            'timestamp': self.timestamp.isoformat(),
            'error_number': self.error_number,
            'error_class': self.error_class,
            'error_state': self.error_state,
        }


class MessageChannel:
    """Ordered, thread-safe sink for the diagnostics of a single call.

    The channel is opened before a batch starts and closed before the
    result is handed back, so everything posted in between keeps the
    order it was produced in, whichever thread posted it.
    """

    def __init__(self) -> None:
        self._messages: List[QueryMessage] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: QueryMessage) -> None:
        """Append a message to the channel."""
        with self._lock:
            if self._closed:
                logger.debug(f"Dropping message posted after channel close: {message.text[:80]}")
                return
            self._messages.append(message)

    def info(self, text: str) -> None:
        self.post(QueryMessage(text=text, severity=MessageSeverity.INFO))

    def warning(self, text: str) -> None:
        self.post(QueryMessage(text=text, severity=MessageSeverity.WARNING))

    def error(self, text: str, line_number: Optional[int] = None) -> None:
        self.post(QueryMessage(text=text, severity=MessageSeverity.ERROR, line_number=line_number))

    def has_errors(self) -> bool:
        with self._lock:
            return any(m.severity == MessageSeverity.ERROR for m in self._messages)

    def snapshot(self) -> List[QueryMessage]:
        """Copy of the messages posted so far."""
        with self._lock:
            return list(self._messages)

    def close(self) -> List[QueryMessage]:
        """Stop accepting messages and return them in posting order."""
        with self._lock:
            self._closed = True
            return list(self._messages)
