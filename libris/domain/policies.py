"""Pure lending rules: fines, extensions, due dates and authorization.

Nothing here touches storage; the services feed these functions the rows
they read and act on the answers.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from libris.domain.entities import Borrowing, BorrowingStatus, Identity
from libris.domain.errors import NotAuthenticated, NotAuthorized

FINE_PER_DAY = Decimal("0.50")
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class LendingPolicy:
    loan_period_days: int = 14
    extension_days: int = 7
    max_extensions: int = 2
    fine_per_day: Decimal = FINE_PER_DAY

    @classmethod
    def from_settings(cls, settings) -> "LendingPolicy":
        return cls(
            loan_period_days=settings.loan_period_days,
            extension_days=settings.extension_days,
            max_extensions=settings.max_extensions,
            fine_per_day=Decimal(str(settings.fine_per_day)),
        )

    def due_date_for(self, borrowed_at: datetime) -> datetime:
        return borrowed_at + timedelta(days=self.loan_period_days)

    def extended_due_date(self, due_date: datetime) -> datetime:
        return due_date + timedelta(days=self.extension_days)


def compute_fine(
    due_date: datetime, as_of: datetime, daily_rate: Decimal = FINE_PER_DAY
) -> Decimal:
    """Fine owed for a copy still out (or returned) at *as_of*.

    Only whole days count: 36 hours late is one day late.
    """
    days_late = (as_of - due_date).days  # timedelta.days floors
    if days_late <= 0:
        return Decimal("0.00")
    return (Decimal(days_late) * Decimal(daily_rate)).quantize(CENTS, rounding=ROUND_HALF_UP)


def can_extend(borrowing: Borrowing) -> bool:
    return (
        borrowing.admin_validated
        and borrowing.extension_count < borrowing.max_extensions
        and borrowing.status == BorrowingStatus.ACTIVE
    )


def accrued_fine(
    borrowing: Borrowing, now: datetime, daily_rate: Decimal = FINE_PER_DAY
) -> Decimal:
    """Stored fine for returned borrowings, running fine for active ones."""
    if borrowing.status == BorrowingStatus.RETURNED:
        return Decimal(borrowing.fine_amount)
    return compute_fine(borrowing.due_date, now, daily_rate)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------
class Capability(str, Enum):
    BORROW = "borrow"
    PUBLISH_BOOK = "publish_book"
    REVIEW = "review"
    FAVORITE = "favorite"
    MESSAGE = "message"
    READ_LOG = "read_log"

    # Granted to members only on rows they own
    VIEW_BORROWING = "view_borrowing"
    RETURN_BORROWING = "return_borrowing"
    EXTEND_BORROWING = "extend_borrowing"
    EDIT_BOOK = "edit_book"
    VIEW_CONVERSATION = "view_conversation"

    # Staff only
    VALIDATE_BORROWING = "validate_borrowing"
    SETTLE_FINE = "settle_fine"
    MANAGE_INVENTORY = "manage_inventory"
    MANAGE_ROLES = "manage_roles"
    VIEW_ALL = "view_all"
    RUN_RECONCILIATION = "run_reconciliation"


MEMBER_CAPABILITIES = frozenset(
    {
        Capability.BORROW,
        Capability.PUBLISH_BOOK,
        Capability.REVIEW,
        Capability.FAVORITE,
        Capability.MESSAGE,
        Capability.READ_LOG,
    }
)

OWNER_CAPABILITIES = frozenset(
    {
        Capability.VIEW_BORROWING,
        Capability.RETURN_BORROWING,
        Capability.EXTEND_BORROWING,
        Capability.EDIT_BOOK,
        Capability.VIEW_CONVERSATION,
    }
)


def authorize(
    identity: Optional[Identity],
    capability: Capability,
    owner_id: Optional[UUID] = None,
) -> Identity:
    """Raise unless *identity* holds *capability*; return the identity."""
    if identity is None:
        raise NotAuthenticated()
    if identity.is_admin:
        return identity
    if capability in MEMBER_CAPABILITIES:
        return identity
    if capability in OWNER_CAPABILITIES and owner_id is not None and owner_id == identity.user_id:
        return identity
    raise NotAuthorized()
