"""SQL-backed membership oracle over the ``family_members`` table."""

from sqlalchemy import Table, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from ..domain.constants import MemberRole
from ..domain.exceptions import TransientStoreError
from ..domain.ports import MembershipOracle
from ..logging_config import get_logger
from ..logging_utils import log_store_write
from ..utils import Clock, utc_now
from .database.models import FamilyAdminLockRecord, MembershipRecord

logger = get_logger(__name__)

_admin_locks: Table = FamilyAdminLockRecord.__table__  # type: ignore[attr-defined]


class SqlMembershipOracle(MembershipOracle):
    """Membership answers read from, and grants written to, the caller's session.

    Sharing the session is what makes a grant atomic with the claim update:
    both are flushed in one transaction and roll back together.
    """

    def __init__(self, session: Session, clock: Clock = utc_now):
        self.session = session
        self.clock = clock

    def lock_admin_changes(self, family_id: str) -> None:
        """Write the family's lock row so concurrent admin changes queue up.

        The update holds a row lock on PostgreSQL and the database write lock
        on SQLite until the transaction ends. Two first-time lockers race on
        the insert; the loser gets ``TransientStoreError`` and is retried.
        """
        now = self.clock()
        try:
            result = self.session.connection().execute(
                update(_admin_locks)
                .where(_admin_locks.c.family_id == family_id)
                .values(locked_at=now)
            )
            if result.rowcount == 0:
                self.session.add(
                    FamilyAdminLockRecord(family_id=family_id, locked_at=now)
                )
                self.session.flush()
        except (IntegrityError, OperationalError) as e:
            logger.warning(
                "Family admin lock is contended", family_id=family_id, error=str(e)
            )
            raise TransientStoreError(
                f"Could not lock admin changes for family {family_id}"
            ) from e

        log_store_write("family_admin_locks", "lock", family_id=family_id)

    def has_active_admin(self, family_id: str) -> bool:
        admin = self.session.exec(
            select(MembershipRecord).where(
                MembershipRecord.family_id == family_id,
                MembershipRecord.role == MemberRole.ADMIN.value,
                MembershipRecord.active == True,  # noqa: E712
            )
        ).first()
        return admin is not None

    def is_member(self, family_id: str, user_id: str) -> bool:
        record = self.session.get(MembershipRecord, (family_id, user_id))
        return record is not None and record.active

    def list_members(self, family_id: str) -> list[str]:
        records = self.session.exec(
            select(MembershipRecord).where(
                MembershipRecord.family_id == family_id,
                MembershipRecord.active == True,  # noqa: E712
            )
        ).all()
        return [record.user_id for record in records]

    def grant_role(self, family_id: str, user_id: str, role: MemberRole) -> None:
        record = self.session.get(MembershipRecord, (family_id, user_id))
        if record is None:
            record = MembershipRecord(family_id=family_id, user_id=user_id)
        record.role = role.value
        record.active = True
        record.updated_at = self.clock()
        self.session.add(record)
        try:
            self.session.flush()
        except OperationalError as e:
            logger.warning(
                "Role grant could not be written",
                family_id=family_id,
                user_id=user_id,
                error=str(e),
            )
            raise TransientStoreError(f"Could not grant {role.value} role") from e

    def add_member(
        self, family_id: str, user_id: str, role: MemberRole = MemberRole.MEMBER
    ) -> None:
        """Seed a membership row (used by the CLI and tests)."""
        if role == MemberRole.ADMIN:
            self.lock_admin_changes(family_id)
        self.grant_role(family_id, user_id, role)
