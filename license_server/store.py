import datetime
import logging
from contextlib import contextmanager
from typing import Callable, List, Optional, Tuple

from sqlalchemy import distinct, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from .clock import utcnow
from .errors import ConflictError, NotFoundError, StoreError
from .models import Admin, License, User

logger = logging.getLogger(__name__)


class LicenseStore:
    """
    Persistence for users, licenses and admins.

    Every public method is its own unit of work: it commits on success,
    rolls back on failure, and hands back detached objects. Database
    failures surface as StoreError and are never retried here.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            logger.warning("integrity error: %s", exc.orig)
            raise ConflictError("Record already exists") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("store failure: %s", exc)
            raise StoreError("License store unavailable") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ---------------------------- licenses ----------------------------

    def _licenses(self, db):
        return db.query(License).options(joinedload(License.user, innerjoin=True))

    def find_by_key(self, license_key: str) -> Optional[License]:
        with self.session() as db:
            return self._licenses(db).filter(License.license_key == license_key).first()

    def find_by_id(self, license_id: str) -> Optional[License]:
        with self.session() as db:
            return self._licenses(db).filter(License.id == license_id).first()

    def bind_hardware_id(self, license_id: str, hardware_id: str) -> bool:
        """
        Store ``hardware_id`` only if binding is enabled and the license has none yet.
        Returns True when this call performed the binding.
        """
        with self.session() as db:
            updated = (
                db.query(License)
                .filter(
                    License.id == license_id,
                    License.hardware_binding_enabled.is_(True),
                    License.hardware_id.is_(None),
                )
                .update(
                    {License.hardware_id: hardware_id, License.updated_at: utcnow()},
                    synchronize_session=False,
                )
            )
        return updated == 1

    def add_license(self, license: License) -> License:
        with self.session() as db:
            db.add(license)
            db.flush()
            license.user  # load owner while attached
        return license

    def update_license(self, license_id: str, mutate: Callable[[License], None]) -> License:
        """Load the row for update, apply ``mutate`` and commit."""
        with self.session() as db:
            license = (
                self._licenses(db)
                .filter(License.id == license_id)
                .with_for_update(of=License)
                .first()
            )
            if license is None:
                raise NotFoundError("License not found")
            mutate(license)
            license.updated_at = utcnow()
        return license

    def list_licenses(self) -> List[License]:
        with self.session() as db:
            return self._licenses(db).order_by(License.created_at.desc()).all()

    def list_user_licenses(self, user_id: str) -> List[License]:
        with self.session() as db:
            return (
                self._licenses(db)
                .filter(License.user_id == user_id)
                .order_by(License.created_at.desc())
                .all()
            )

    # ------------------------------ users ------------------------------

    def add_user(self, user: User) -> User:
        with self.session() as db:
            db.add(user)
        return user

    def find_user(self, user_id: str) -> Optional[User]:
        with self.session() as db:
            return db.get(User, user_id)

    def find_user_by_hash(self, user_hash: str) -> Optional[User]:
        with self.session() as db:
            return db.query(User).filter_by(user_hash=user_hash).first()

    def find_user_by_name(self, username: str) -> Optional[User]:
        with self.session() as db:
            return db.query(User).filter_by(username=username).first()

    def list_users(self) -> List[Tuple[User, int]]:
        with self.session() as db:
            rows = (
                db.query(User, func.count(License.id))
                .outerjoin(License, License.user_id == User.id)
                .group_by(User.id)
                .order_by(User.created_at.desc())
                .all()
            )
            return [(user, count) for user, count in rows]

    def delete_user(self, user_id: str) -> bool:
        with self.session() as db:
            user = db.get(User, user_id)
            if user is None:
                return False
            db.delete(user)
        return True

    # ------------------------------ admins -----------------------------

    def find_admin(self, username: str) -> Optional[Admin]:
        with self.session() as db:
            return db.query(Admin).filter_by(username=username).first()

    def count_admins(self) -> int:
        with self.session() as db:
            return db.query(func.count(Admin.id)).scalar()

    def add_admin(self, admin: Admin) -> Admin:
        with self.session() as db:
            db.add(admin)
        return admin

    # ---------------------------- dashboard ----------------------------

    def stats(self, now: datetime.datetime, expiring_days: int = 30) -> dict:
        soon = now + datetime.timedelta(days=expiring_days)
        first_day = (now - datetime.timedelta(days=6)).replace(hour=0, minute=0, second=0, microsecond=0)

        with self.session() as db:
            total_users = db.query(func.count(User.id)).scalar()
            total_licenses = db.query(func.count(License.id)).scalar()
            active_users = (
                db.query(func.count(distinct(License.user_id)))
                .filter(License.expiration_date > now)
                .scalar()
            )
            expiring_soon = (
                db.query(func.count(License.id))
                .filter(License.expiration_date > now, License.expiration_date <= soon)
                .scalar()
            )
            created = [
                row[0]
                for row in db.query(License.created_at).filter(License.created_at >= first_day).all()
            ]

        per_day = {}
        for created_at in created:
            per_day[created_at.date()] = per_day.get(created_at.date(), 0) + 1
        days = [(first_day + datetime.timedelta(days=i)).date() for i in range(7)]

        return {
            "totalUsers": total_users,
            "totalLicenses": total_licenses,
            "activeUsers": active_users,
            "activeUsersPercent": round(active_users * 100 / total_users) if total_users else 0,
            "expiringSoonLicenses": expiring_soon,
            "recentActivity": [
                {"date": day.isoformat(), "licenses": per_day.get(day, 0)} for day in days
            ],
        }
