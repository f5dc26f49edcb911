"""
Entitlement Service - Idempotent course enrollment grants.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursepay.database import storage_errors
from coursepay.models.enrollment import Enrollment
from coursepay.utils.logger import get_logger

logger = get_logger(__name__)

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class EntitlementGrantor:
    """Grants enrollments; the (user_id, course_id) unique index arbitrates races."""

    def __init__(self, db: Session):
        self.db = db

    def grant(self, user_id: str, content_id: str, payment_id: Optional[str]) -> bool:
        """Ensure ``user_id`` is enrolled in ``content_id``.

        Safe to call any number of times, concurrently, for any payment on the
        same pair: the first insert wins and later ones are no-ops.
        Does not commit.

        Returns:
            True if this call created the enrollment, False if it already existed.
        """
        insert = _UPSERT_INSERTS.get(self.db.get_bind().dialect.name)
        values = {"user_id": user_id, "course_id": content_id, "payment_id": payment_id}

        with storage_errors("entitlement grant"):
            if insert is not None:
                stmt = insert(Enrollment.__table__).values(**values).on_conflict_do_nothing(
                    index_elements=["user_id", "course_id"]
                )
                created = self.db.execute(stmt).rowcount == 1
            else:
                created = self._grant_with_savepoint(values)

        if created:
            logger.info("Enrollment created: user=%s course=%s payment=%s", user_id, content_id, payment_id)
        else:
            logger.info("Enrollment already present: user=%s course=%s", user_id, content_id)
        return created

    def _grant_with_savepoint(self, values: dict) -> bool:
        savepoint = self.db.begin_nested()
        try:
            self.db.add(Enrollment(**values))
            self.db.flush()
        except IntegrityError:
            savepoint.rollback()
            return False
        savepoint.commit()
        return True

    def has_entitlement(self, user_id: str, content_id: str) -> bool:
        with storage_errors("entitlement lookup"):
            return self.db.execute(
                select(Enrollment.id).where(
                    Enrollment.user_id == user_id,
                    Enrollment.course_id == content_id,
                )
            ).first() is not None
