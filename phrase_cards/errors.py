"""
Error handling system for Phrase Cards.

This module provides centralized error definitions, error detection,
and actionable error messages for the local store and playback layers.
"""

import logging
from enum import Enum
from typing import List, Optional, Dict, Any
from dataclasses import dataclass


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors that can occur in the core."""
    INPUT_VALIDATION = "input_validation"
    STORAGE = "storage"
    TRANSACTION = "transaction"
    PLAYBACK = "playback"


@dataclass
class ProcessingError:
    """Represents an error with context and guidance."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    details: str
    suggested_actions: List[str]
    error_code: str
    context: Dict[str, Any] = None

    def __post_init__(self):
        if self.context is None:
            self.context = {}


class PhraseCardsError(Exception):
    """Base exception for Phrase Cards errors."""

    def __init__(self, processing_error: ProcessingError):
        self.processing_error = processing_error
        super().__init__(processing_error.message)


class StoreUnavailable(PhraseCardsError):
    """Raised when the local store cannot be opened. Fatal to the app."""
    pass


class TransactionAborted(PhraseCardsError):
    """Raised when a save or delete fails to commit."""
    pass


class InputValidationError(PhraseCardsError):
    """Raised when a record field holds a value outside its domain."""
    pass


class InvalidRange(InputValidationError):
    """Raised when trim or playback bounds are malformed."""
    pass


class ErrorHandler:
    """
    Centralized error handling and reporting system.

    Turns low-level failures into categorized errors with
    actionable guidance, and keeps a log of what went wrong.
    """

    # Only the most recent entries are kept in a long-running app
    MAX_RECORDED = 100

    def __init__(self, max_recorded: int = MAX_RECORDED):
        self.logger = logging.getLogger(__name__)
        self.max_recorded = max_recorded
        self.errors: List[ProcessingError] = []
        self.warnings: List[ProcessingError] = []

    def add_error(self, error: ProcessingError) -> None:
        """Add an error to the collection."""
        if error.severity in [ErrorSeverity.ERROR, ErrorSeverity.CRITICAL]:
            self._record(self.errors, error)
        elif error.severity == ErrorSeverity.WARNING:
            self._record(self.warnings, error)

        log_level = {
            ErrorSeverity.INFO: logging.INFO,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL
        }[error.severity]

        self.logger.log(log_level, f"[{error.error_code}] {error.message}")
        if error.details:
            self.logger.log(log_level, f"Details: {error.details}")

    def _record(self, entries: List[ProcessingError], error: ProcessingError) -> None:
        entries.append(error)
        if len(entries) > self.max_recorded:
            del entries[:len(entries) - self.max_recorded]

    def has_errors(self) -> bool:
        """Check if any errors have been recorded."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if any warnings have been recorded."""
        return len(self.warnings) > 0

    def get_error_summary(self) -> Dict[str, Any]:
        """Get a summary of all errors and warnings."""
        return {
            'error_count': len(self.errors),
            'warning_count': len(self.warnings),
            'errors': [self._format_error_for_summary(e) for e in self.errors],
            'warnings': [self._format_error_for_summary(e) for e in self.warnings]
        }

    def _format_error_for_summary(self, error: ProcessingError) -> Dict[str, Any]:
        """Format error for summary display."""
        return {
            'code': error.error_code,
            'category': error.category.value,
            'severity': error.severity.value,
            'message': error.message,
            'suggested_actions': error.suggested_actions
        }

    def clear_errors(self) -> None:
        """Clear all recorded errors and warnings."""
        self.errors.clear()
        self.warnings.clear()

    def handle_store_error(self, error: Exception, context: Dict[str, Any] = None) -> ProcessingError:
        """Handle failures while opening the local store."""
        error_str = str(error).lower()

        if 'unable to open' in error_str or 'permission' in error_str or 'readonly' in error_str:
            return ProcessingError(
                category=ErrorCategory.STORAGE,
                severity=ErrorSeverity.CRITICAL,
                message="Local store could not be opened",
                details=f"The database file is not accessible: {error}",
                suggested_actions=[
                    "Check that the data directory exists and is writable",
                    "Set PHRASE_CARDS_DB to a writable location"
                ],
                error_code="STORE_001",
                context=context
            )

        if 'not a database' in error_str or 'malformed' in error_str or 'corrupt' in error_str:
            return ProcessingError(
                category=ErrorCategory.STORAGE,
                severity=ErrorSeverity.CRITICAL,
                message="Local store is corrupted",
                details=f"The database file could not be read: {error}",
                suggested_actions=[
                    "Restore the database file from a backup",
                    "Move the damaged file aside to start with an empty store"
                ],
                error_code="STORE_002",
                context=context
            )

        if 'full' in error_str or 'quota' in error_str:
            return ProcessingError(
                category=ErrorCategory.STORAGE,
                severity=ErrorSeverity.CRITICAL,
                message="Not enough storage space",
                details=f"The store ran out of space: {error}",
                suggested_actions=[
                    "Free disk space and restart the app",
                    "Delete cards with large audio clips"
                ],
                error_code="STORE_003",
                context=context
            )

        return ProcessingError(
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.CRITICAL,
            message="Local store unavailable",
            details=f"Unexpected storage error: {error}",
            suggested_actions=[
                "Restart the app",
                "Check the database file location and permissions"
            ],
            error_code="STORE_004",
            context=context
        )

    def handle_transaction_error(self, error: Exception, operation: str,
                                 context: Dict[str, Any] = None) -> ProcessingError:
        """Handle a save or delete that failed to commit."""
        error_str = str(error).lower()

        if 'locked' in error_str or 'busy' in error_str:
            return ProcessingError(
                category=ErrorCategory.TRANSACTION,
                severity=ErrorSeverity.ERROR,
                message=f"Card {operation} failed: store is busy",
                details=f"Another writer holds the database lock: {error}",
                suggested_actions=[
                    "Retry the operation",
                    "Close other programs using the database file"
                ],
                error_code="TX_001",
                context=context
            )

        if 'full' in error_str or 'quota' in error_str:
            return ProcessingError(
                category=ErrorCategory.TRANSACTION,
                severity=ErrorSeverity.ERROR,
                message=f"Card {operation} failed: not enough storage space",
                details=f"The store ran out of space: {error}",
                suggested_actions=[
                    "Free disk space and retry",
                    "Use a shorter audio clip"
                ],
                error_code="TX_002",
                context=context
            )

        return ProcessingError(
            category=ErrorCategory.TRANSACTION,
            severity=ErrorSeverity.ERROR,
            message=f"Card {operation} failed",
            details=f"The transaction was rolled back: {error}",
            suggested_actions=[
                "Retry the operation",
                "Nothing was written; the previous state is intact"
            ],
            error_code="TX_003",
            context=context
        )

    def handle_playback_error(self, error: Exception, during_start: bool = False,
                              context: Dict[str, Any] = None) -> ProcessingError:
        """Handle a media handle failing under the playback controller."""
        if during_start:
            return ProcessingError(
                category=ErrorCategory.PLAYBACK,
                severity=ErrorSeverity.ERROR,
                message="Playback could not start",
                details=f"The media handle rejected seek, play or subscribe: {error}",
                suggested_actions=[
                    "Check that the audio output is available",
                    "Reload the card's audio and try again"
                ],
                error_code="PLAY_002",
                context=context
            )

        return ProcessingError(
            category=ErrorCategory.PLAYBACK,
            severity=ErrorSeverity.WARNING,
            message="Playback monitor stopped",
            details=f"The media handle failed while playing; playback was cancelled: {error}",
            suggested_actions=[
                "Press play again",
                "Reload the card if the audio element was replaced"
            ],
            error_code="PLAY_001",
            context=context
        )

    def invalid_range(self, start_sec: float, end_sec: float,
                      reason: Optional[str] = None) -> ProcessingError:
        """Describe a malformed trim or playback window."""
        if reason is None:
            if start_sec < 0:
                reason = "start must not be negative"
            else:
                reason = "end must be greater than start"

        return ProcessingError(
            category=ErrorCategory.INPUT_VALIDATION,
            severity=ErrorSeverity.ERROR,
            message="Invalid trim times",
            details=f"Window [{start_sec}, {end_sec}) rejected: {reason}",
            suggested_actions=[
                "Enter a start time of 0 or more",
                "Enter an end time greater than the start time"
            ],
            error_code="RANGE_001",
            context={'start_sec': start_sec, 'end_sec': end_sec}
        )

    def invalid_value(self, field_name: str, value: Any, allowed: str) -> ProcessingError:
        """Describe a field value outside its domain."""
        return ProcessingError(
            category=ErrorCategory.INPUT_VALIDATION,
            severity=ErrorSeverity.ERROR,
            message=f"Invalid value for {field_name}",
            details=f"{value!r} is not allowed; expected {allowed}",
            suggested_actions=[f"Use {allowed}"],
            error_code="INPUT_001",
            context={'field': field_name, 'value': value}
        )


# Global error handler instance
error_handler = ErrorHandler()
