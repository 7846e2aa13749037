"""
Read-only plan check used by the router to gate the memory layer.
Billing owns these columns; nothing here writes them. Redaction never
looks at entitlements.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

import models

PRO_STATUSES = ("active", "trialing")


@dataclass(frozen=True)
class Entitlements:
    plan: str
    status: str

    @property
    def is_pro(self) -> bool:
        return self.plan == "pro" and self.status in PRO_STATUSES


def get_entitlements(db: Session, user_id: int) -> Entitlements:
    user: Optional[models.User] = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        return Entitlements(plan="free", status="none")
    return Entitlements(plan=user.plan or "free", status=user.subscription_status or "none")
