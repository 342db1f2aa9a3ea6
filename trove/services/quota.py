"""Per-user storage accounting.

Both mutations are single UPDATE statements so concurrent requests never lose
an increment. Neither commits; they join the caller's transaction.
"""

from sqlalchemy import case
from sqlalchemy.orm import Session

from trove.models.user import User


class QuotaService:
    """Atomic credit/debit of ``users.storage_used``."""

    @staticmethod
    def credit(db: Session, user_id: int, amount: int) -> None:
        if amount <= 0:
            return
        db.query(User).filter(User.id == user_id).update(
            {User.storage_used: User.storage_used + amount},
            synchronize_session=False,
        )

    @staticmethod
    def debit(db: Session, user_id: int, amount: int) -> None:
        """Subtract ``amount``, saturating at zero."""
        if amount <= 0:
            return
        db.query(User).filter(User.id == user_id).update(
            {
                User.storage_used: case(
                    (User.storage_used >= amount, User.storage_used - amount),
                    else_=0,
                )
            },
            synchronize_session=False,
        )

    @staticmethod
    def has_headroom(user: User, amount: int) -> bool:
        return (user.storage_used or 0) + amount <= (user.storage_quota or 0)


quota_service = QuotaService()
