"""Typed exceptions for billing failures."""


class BillingError(Exception):
    """Base class for billing errors."""

    code = "BILLING_ERROR"


class InvoiceValidationError(BillingError, ValueError):
    """Request or data cannot produce a valid invoice. Never retried."""

    code = "VALIDATION_ERROR"


class PlanCompletedError(InvoiceValidationError):
    """Computed installment is past the end of the plan."""

    code = "PLAN_COMPLETED"

    def __init__(self, due_number: int, duration: int):
        self.due_number = due_number
        self.duration = duration
        super().__init__(
            f"Installment number ({due_number}) exceeds plan duration ({duration} months). "
            f"This plan has completed all installments."
        )


class MissingScheduleError(InvoiceValidationError):
    """Plan has no monthly schedule for the requested installment."""

    code = "SCHEDULE_MISSING"


class NotFoundError(BillingError, LookupError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"


class EnrollmentNotFoundError(NotFoundError):
    """No enrollment for the member and plan."""


class PlanNotFoundError(NotFoundError):
    """Plan does not exist."""


class MemberNotFoundError(NotFoundError):
    """Member does not exist."""


class InvoiceNotFoundError(NotFoundError):
    """Invoice does not exist."""


class ConcurrentInvoiceError(BillingError):
    """Another invoice is being created for the same enrollment."""

    code = "INVOICE_IN_PROGRESS"
