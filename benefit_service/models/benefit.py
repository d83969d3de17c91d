"""
Benefit Model
A named balance holder. ``version`` is the lock token: SQLAlchemy adds
``WHERE version = :old`` to every UPDATE and bumps it by one, so a write
built from a stale read matches no row and is rejected.
"""

import uuid
from decimal import Decimal, InvalidOperation
from benefit_service.extensions import db


CENTS = Decimal('0.01')
# NUMERIC(15, 2) leaves 13 integer digits
BALANCE_LIMIT = Decimal('1E13')


def is_whole_cents(value):
    """True when ``value`` has no fraction of a cent, however it is written."""
    try:
        return value == value.quantize(CENTS)
    except InvalidOperation:
        return False


def _next_version(current):
    return 0 if current is None else current + 1


class Benefit(db.Model):
    __tablename__ = 'benefits'
    __table_args__ = (
        db.CheckConstraint('balance >= 0', name='ck_benefits_balance_non_negative'),
    )

    benefit_id = db.Column(db.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(255))
    balance = db.Column(db.Numeric(15, 2), nullable=False, default=Decimal('0.00'))
    active = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {
        'version_id_col': version,
        'version_id_generator': _next_version,
    }

    def __repr__(self):
        return f'<Benefit {self.benefit_id} balance={self.balance} v{self.version}>'

    def to_dict(self):
        return {
            'id': str(self.benefit_id),
            'name': self.name,
            'description': self.description,
            'balance': str(Decimal(self.balance).quantize(CENTS)),
            'active': self.active,
            'version': self.version,
        }
