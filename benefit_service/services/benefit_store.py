"""
Benefit Store
Persistence for benefit records on top of a SQLAlchemy session.

The store never commits half a unit of work: ``stage`` flushes (which is
where the version compare-and-swap happens) and ``commit`` ends the
transaction. Every database failure leaves the session rolled back and
surfaces as a typed BenefitError.
"""

import logging
from contextlib import contextmanager
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from benefit_service.errors import Busy, ConflictError, NotFound, StorageError
from benefit_service.models import Benefit

logger = logging.getLogger(__name__)

# PostgreSQL lock_not_available, raised when lock_timeout expires
PG_LOCK_NOT_AVAILABLE = '55P03'


def _is_lock_timeout(exc):
    if getattr(exc.orig, 'pgcode', None) == PG_LOCK_NOT_AVAILABLE:
        return True
    return 'database is locked' in str(exc.orig)


class BenefitStore:

    def __init__(self, session):
        self.session = session

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except StaleDataError as e:
            self.session.rollback()
            raise ConflictError('Benefit was modified by another transaction') from e
        except OperationalError as e:
            self.session.rollback()
            if _is_lock_timeout(e):
                raise Busy('Timed out waiting for a record lock') from e
            logger.error('Database operational error: %s', e)
            raise StorageError('Database unavailable') from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error('Database error: %s', e)
            raise StorageError('Database error') from e

    # --- Reads ----------------------------------------------------------

    def find(self, benefit_id):
        with self._translate_errors():
            return self.session.get(Benefit, benefit_id)

    def get(self, benefit_id):
        benefit = self.find(benefit_id)
        if benefit is None:
            raise NotFound(f'Benefit not found: {benefit_id}')
        return benefit

    def list(self):
        with self._translate_errors():
            return self.session.scalars(
                select(Benefit).order_by(Benefit.created_at, Benefit.name)
            ).all()

    def list_active(self):
        with self._translate_errors():
            return self.session.scalars(
                select(Benefit).where(Benefit.active.is_(True)).order_by(Benefit.created_at, Benefit.name)
            ).all()

    def find_by_name_contains(self, fragment):
        with self._translate_errors():
            return self.session.scalars(
                select(Benefit)
                .where(Benefit.name.icontains(fragment, autoescape=True))
                .order_by(Benefit.name)
            ).all()

    def load_fresh(self, benefit_id):
        """Read the committed row, discarding whatever the session cached."""
        with self._translate_errors():
            return self.session.scalars(
                select(Benefit)
                .where(Benefit.benefit_id == benefit_id)
                .execution_options(populate_existing=True)
            ).one_or_none()

    def lock_for_update(self, benefit_id):
        """SELECT ... FOR UPDATE; the row lock lives until commit or rollback."""
        with self._translate_errors():
            return self.session.scalars(
                select(Benefit)
                .where(Benefit.benefit_id == benefit_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).one_or_none()

    def set_lock_timeout(self, seconds):
        # Only PostgreSQL has a per-transaction lock wait; SQLite relies on
        # the driver's busy timeout.
        if self.session.get_bind().dialect.name != 'postgresql':
            return
        with self._translate_errors():
            self.session.execute(
                text(f"SET LOCAL lock_timeout = '{int(seconds * 1000)}ms'")
            )

    # --- Writes ---------------------------------------------------------

    def create(self, name, balance, description=None, active=True):
        benefit = Benefit(
            name=name,
            description=description,
            balance=balance,
            active=active,
        )
        with self._translate_errors():
            self.session.add(benefit)
            self.session.commit()
        logger.info('Benefit created', extra={'benefit_id': str(benefit.benefit_id)})
        return benefit

    def save(self, benefit):
        """Persist one record on its own; stale versions raise ConflictError."""
        self.stage(benefit)
        self.commit()
        return benefit

    def stage(self, *benefits):
        with self._translate_errors():
            self.session.add_all(benefits)
            self.session.flush()

    def commit(self):
        with self._translate_errors():
            self.session.commit()

    def rollback(self):
        self.session.rollback()
