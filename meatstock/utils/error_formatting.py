"""
Error UX & messaging.

Turns stock errors and shortage results into structured, operator-facing
messages with recovery guidance. Used by the transaction commit path to
surface non-fatal shortage warnings.
"""

import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..domain.errors import (
    DuplicateKeyError,
    InvalidQuantity,
    NotFound,
    OverConsumption,
    StockError,
    StorageFailure,
)
from ..domain.models import AllocationResult


class ErrorSeverity(Enum):
    """Error severity classification for presentation."""

    INFO = "info"           # Informational (no action needed)
    WARNING = "warning"     # Caution (operation went through)
    ERROR = "error"         # Error (operation rejected)
    CRITICAL = "critical"   # System-level issue (storage)


@dataclass
class ErrorContext:
    """
    Structured error context for operator messaging.

    Attributes:
        message: Human-readable description
        severity: Severity level
        technical_details: Technical error info (for logs/debugging)
        context: Additional context (product, lot, operation)
        recovery_steps: Actions the operator can take
        error_code: Optional code for support/documentation
    """
    message: str
    severity: ErrorSeverity
    technical_details: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    recovery_steps: List[str] = field(default_factory=list)
    error_code: Optional[str] = None

    @property
    def is_fatal(self) -> bool:
        return self.severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)

    def format_for_display(self, include_technical: bool = False) -> str:
        """
        Format for an operator dialog.

        Args:
            include_technical: Include technical details in message
        """
        lines = [self.message]

        if self.context:
            lines.append("")
            lines.append("Details:")
            for key, value in self.context.items():
                if value is not None:
                    lines.append(f"  • {key}: {value}")

        if self.recovery_steps:
            lines.append("")
            lines.append("Suggested actions:")
            for i, step in enumerate(self.recovery_steps, 1):
                lines.append(f"  {i}. {step}")

        if include_technical and self.technical_details:
            lines.append("")
            lines.append("Technical details:")
            lines.append(f"  {self.technical_details}")

        if self.error_code:
            lines.append("")
            lines.append(f"Error code: {self.error_code}")

        return "\n".join(lines)

    def format_for_log(self) -> str:
        """Format for structured logging."""
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items() if v is not None)
        return (
            f"[{self.severity.value.upper()}] {self.message} | Context: {context_str} "
            f"| Technical: {self.technical_details}"
        )


class ErrorFormatter:
    """Transforms exceptions and shortage results into ErrorContext objects."""

    @staticmethod
    def format_shortage(result: AllocationResult, product_name: Optional[str] = None) -> ErrorContext:
        """
        Non-fatal warning for an outbound that exceeded lot-tracked stock.

        The sale was recorded; the shortage part carries no lot number.
        """
        return ErrorContext(
            message=(
                f"Lot stock insufficient: {result.shortage}kg of {result.requested}kg "
                f"recorded without a lot number"
            ),
            severity=ErrorSeverity.WARNING,
            technical_details=f"shortage={result.shortage}, lots={', '.join(result.lot_numbers) or '-'}",
            context={
                "Product": product_name or result.product_id,
                "Requested": result.requested,
                "From lots": result.allocated_from_lots,
                "Shortage": result.shortage,
            },
            recovery_steps=[
                "Check for receipts that were not registered as lots",
                "Run a physical count and correct stock with an adjustment",
            ],
            error_code="STOCK_SHORTAGE",
        )

    @staticmethod
    def format_stock_error(
        exc: Exception,
        operation: str,
        product_id: Optional[int] = None,
        additional_context: Optional[Dict[str, Any]] = None,
    ) -> ErrorContext:
        """
        Format errors raised by the stock components.

        Args:
            exc: The exception raised
            operation: Operation that failed (e.g. "allocate_outbound", "open_lot")
            product_id: Product involved (if applicable)
            additional_context: Additional context data
        """
        context: Dict[str, Any] = {"Operation": operation}
        if product_id is not None:
            context["Product"] = product_id
        if additional_context:
            context.update(additional_context)

        technical = f"{type(exc).__name__}: {exc}"

        if isinstance(exc, InvalidQuantity):
            return ErrorContext(
                message=f"Invalid quantity: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=technical,
                context=context,
                recovery_steps=["Enter a quantity greater than 0"],
                error_code="STOCK_001",
            )

        if isinstance(exc, OverConsumption):
            return ErrorContext(
                message=f"Lot does not hold enough stock: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=technical,
                context=context,
                recovery_steps=[
                    "Reload the lot list and retry",
                    "Check the lot's remaining quantity",
                ],
                error_code="STOCK_002",
            )

        if isinstance(exc, NotFound):
            return ErrorContext(
                message=f"Not found: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=technical,
                context=context,
                recovery_steps=[
                    "Verify the product or lot number",
                    "Enable inventory tracking for the product first",
                ],
                error_code="STOCK_003",
            )

        if isinstance(exc, DuplicateKeyError):
            return ErrorContext(
                message=f"Already exists: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=technical,
                context=context,
                recovery_steps=["Use a different lot number"],
                error_code="STOCK_004",
            )

        if isinstance(exc, (StorageFailure, sqlite3.Error)):
            return ErrorContext(
                message="Storage failure, the operation was rolled back",
                severity=ErrorSeverity.CRITICAL,
                technical_details=technical,
                context=context,
                recovery_steps=[
                    "Retry in a few seconds",
                    "Run the database integrity check (python -m meatstock.db verify)",
                    "Restore from the latest backup if the problem persists",
                ],
                error_code="DB_001",
            )

        if isinstance(exc, StockError):
            return ErrorContext(
                message=f"Stock operation failed: {exc}",
                severity=ErrorSeverity.ERROR,
                technical_details=technical,
                context=context,
                recovery_steps=["Retry the operation"],
                error_code="STOCK_999",
            )

        return ErrorContext(
            message=f"Unexpected error during {operation}",
            severity=ErrorSeverity.ERROR,
            technical_details=technical,
            context=context,
            recovery_steps=["Retry the operation", "Contact support if the error persists"],
            error_code="UNKNOWN",
        )
