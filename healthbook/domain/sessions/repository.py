"""Session repository - Database operations for clinic sessions"""

from datetime import date
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...models import BlockedDate, ClinicSession, Provider, ProviderAvailability


class SessionRepository:
    """Repository for clinic session database operations"""

    @staticmethod
    def get_provider(db: Session, provider_id: int) -> Optional[Provider]:
        return db.query(Provider).filter(Provider.id == provider_id).first()

    @staticmethod
    def get_session(db: Session, provider_id: int, day: date) -> Optional[ClinicSession]:
        """Get the session for a provider on a calendar date"""
        return (
            db.query(ClinicSession)
            .filter(ClinicSession.provider_id == provider_id, ClinicSession.date == day)
            .first()
        )

    @staticmethod
    def get_session_by_id(db: Session, session_id: int) -> Optional[ClinicSession]:
        return db.query(ClinicSession).filter(ClinicSession.id == session_id).first()

    @staticmethod
    def get_weekly_availability(
        db: Session, provider_id: int, weekday: int
    ) -> Optional[ProviderAvailability]:
        return (
            db.query(ProviderAvailability)
            .filter(
                ProviderAvailability.provider_id == provider_id,
                ProviderAvailability.weekday == weekday,
            )
            .first()
        )

    @staticmethod
    def is_date_blocked(db: Session, provider_id: int, day: date) -> bool:
        return (
            db.query(BlockedDate.id)
            .filter(BlockedDate.provider_id == provider_id, BlockedDate.date == day)
            .first()
            is not None
        )

    @staticmethod
    def add_session(db: Session, **session_data) -> ClinicSession:
        """Insert a session without committing (caller owns the transaction)"""
        session = ClinicSession(**session_data)
        db.add(session)
        db.flush()
        return session

    @staticmethod
    def list_sessions_for_day(db: Session, day: date, status: str) -> list[ClinicSession]:
        return (
            db.query(ClinicSession)
            .filter(ClinicSession.date == day, ClinicSession.status == status)
            .all()
        )

    @staticmethod
    def bump_version(db: Session, session_id: int) -> int:
        """
        Increment the session version inside the current transaction.

        Issued as an UPDATE so it takes the row lock (or SQLite's write lock)
        before anything else in the transaction reads appointment counts.
        Returns the number of rows touched.
        """
        result = db.execute(
            update(ClinicSession)
            .where(ClinicSession.id == session_id)
            .values(version=ClinicSession.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
