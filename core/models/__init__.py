"""Core domain models."""

from core.models.plan import Plan, PlanMonth
from core.models.enrollment import Enrollment, EnrollmentStatus, ArrearUpdate, ArrearClear, ArrearRefreshResult
from core.models.member import Member
from core.models.invoice import Invoice, InvoiceCreate, InvoicePreview, IssuedBy

__all__ = [
    # Plan
    "Plan", "PlanMonth",
    # Enrollment
    "Enrollment", "EnrollmentStatus", "ArrearUpdate", "ArrearClear", "ArrearRefreshResult",
    # Member
    "Member",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoicePreview", "IssuedBy",
]
