"""
ERROR LOGGER - Engine Diagnostic Tracking

Catches and classifies recoverable engine errors at occurrence time,
tagging each with:
- Error category (unknown node, invalid status, rule failure, ...)
- Node context (id, status)
- Rule context (for rule failures)
- Timestamp

Nothing recorded here is fatal: the engine recovers locally and the record
is the only visible trace. When a storage directory is configured, records
are appended to {storage_dir}/{session_id}.jsonl.
"""
import json
import logging
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, asdict
from enum import Enum

logger = logging.getLogger("ProcFlow.ErrorLogger")


# =============================================================================
# ERROR CATEGORIES
# =============================================================================

class ErrorCategory(str, Enum):
    """Categories of recoverable engine errors."""
    UNKNOWN_NODE = "UNKNOWN_NODE"      # Node id referenced but not in the store
    INVALID_STATUS = "INVALID_STATUS"  # Status value outside NodeStatus
    RULE_FAILURE = "RULE_FAILURE"      # Rule condition or action raised
    GRAPH = "GRAPH"                    # Graph integrity problems
    UNKNOWN = "UNKNOWN"                # Unclassified errors


class ErrorSeverity(str, Enum):
    ERROR = "ERROR"          # A rule or operation did not complete
    WARNING = "WARNING"      # Input was ignored or coerced
    INFO = "INFO"            # Informational - for pattern analysis


CATEGORY_SEVERITY: Dict[ErrorCategory, ErrorSeverity] = {
    ErrorCategory.UNKNOWN_NODE: ErrorSeverity.WARNING,
    ErrorCategory.INVALID_STATUS: ErrorSeverity.WARNING,
    ErrorCategory.RULE_FAILURE: ErrorSeverity.ERROR,
    ErrorCategory.GRAPH: ErrorSeverity.ERROR,
    ErrorCategory.UNKNOWN: ErrorSeverity.INFO,
}


# =============================================================================
# ERROR RECORD (The Unit of Error Tracking)
# =============================================================================

@dataclass
class ErrorRecord:
    """
    A single error occurrence with full context.

    Designed for append-only logging (JSONL format).
    """
    category: str  # ErrorCategory.value
    severity: str  # ErrorSeverity.value
    message: str

    # Node context (if applicable)
    node_id: Optional[str] = None
    node_status: Optional[str] = None

    # Rule context
    rule_name: Optional[str] = None

    # Timing
    timestamp: str = None

    # Stack trace (if exception)
    stack_trace: Optional[str] = None

    # Additional context
    extra: Dict[str, Any] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat()
        if self.extra is None:
            self.extra = {}


class ErrorLogger:
    """
    Records engine errors for later inspection.

    Storage format: {storage_dir}/{session_id}.jsonl (optional)
    """

    def __init__(self, storage_dir: Optional[str] = None):
        self.session_id = uuid.uuid4().hex[:12]
        self.storage_dir = Path(storage_dir) if storage_dir else None
        if self.storage_dir:
            self.storage_dir.mkdir(parents=True, exist_ok=True)

        # In-memory buffer for current session
        self._session_errors: List[ErrorRecord] = []

    @property
    def log_path(self) -> Optional[Path]:
        if not self.storage_dir:
            return None
        return self.storage_dir / f"{self.session_id}.jsonl"

    def log_error(
        self,
        error: Any,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        node_id: Optional[str] = None,
        node_status: Optional[str] = None,
        rule_name: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> ErrorRecord:
        """
        Log an error at occurrence time.

        Args:
            error: The exception or error message
            category: What kind of failure this is
            node_id: ID of the node involved (if applicable)
            node_status: Status of that node
            rule_name: Rule that failed (for RULE_FAILURE)
            extra: Additional context

        Returns:
            The ErrorRecord that was logged
        """
        stack_trace = None
        if isinstance(error, BaseException):
            stack_trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        record = ErrorRecord(
            category=category.value,
            severity=CATEGORY_SEVERITY.get(category, ErrorSeverity.INFO).value,
            message=str(error),
            node_id=node_id,
            node_status=node_status,
            rule_name=rule_name,
            stack_trace=stack_trace,
            extra=extra
        )
        self._session_errors.append(record)

        if self.log_path:
            try:
                with open(self.log_path, "a") as f:
                    f.write(json.dumps(asdict(record)) + "\n")
            except OSError as e:
                logger.warning(f"Failed to write error log: {e}")

        return record

    def get_session_errors(self, category: Optional[ErrorCategory] = None) -> List[ErrorRecord]:
        """Errors recorded in this session, optionally filtered by category."""
        if category is None:
            return list(self._session_errors)
        return [r for r in self._session_errors if r.category == category.value]

    def get_summary(self) -> Dict[str, int]:
        """Error counts per category for this session."""
        summary: Dict[str, int] = {}
        for record in self._session_errors:
            summary[record.category] = summary.get(record.category, 0) + 1
        return summary

    def clear(self):
        self._session_errors = []
