"""
Transfer Service
Moves an amount from one benefit to another as a single atomic unit.

The cheap argument checks run before any record is touched. Checks that
depend on stored state run inside the concurrency strategy, against the
rows it just read under its protection. The debit and credit are staged and committed
together.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from benefit_service.errors import InsufficientBalance, InvalidArgument, NotFound
from benefit_service.extensions import current_locking, db
from benefit_service.models.benefit import BALANCE_LIMIT, CENTS, is_whole_cents
from benefit_service.services.benefit_store import BenefitStore


def coerce_benefit_id(value):
    """UUID for a well-formed id, None for anything that can never resolve."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def coerce_amount(value):
    """Decimal for a positive amount with at most two decimal places.

    Floats are converted through ``str`` so 0.1 means 0.1, not the binary
    approximation of it.
    """
    if value is None or isinstance(value, bool):
        raise InvalidArgument('amount must be positive', kind='INVALID_AMOUNT')
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgument('amount must be a decimal number', kind='INVALID_AMOUNT') from None
    if not amount.is_finite() or amount <= 0:
        raise InvalidArgument('amount must be positive', kind='INVALID_AMOUNT')
    if not is_whole_cents(amount):
        raise InvalidArgument('amount must have at most 2 decimal places', kind='INVALID_AMOUNT')
    return amount.quantize(CENTS)


@dataclass(frozen=True)
class TransferReceipt:
    from_id: uuid.UUID
    to_id: uuid.UUID
    amount: Decimal
    from_balance: Decimal
    to_balance: Decimal
    from_version: int
    to_version: int

    def to_dict(self):
        return {
            'from_id': str(self.from_id),
            'to_id': str(self.to_id),
            'amount': str(self.amount),
            'from_balance': str(self.from_balance),
            'to_balance': str(self.to_balance),
            'from_version': self.from_version,
            'to_version': self.to_version,
        }


class TransferEngine:

    def __init__(self, store, locking):
        self.store = store
        self.locking = locking

    def transfer(self, from_id, to_id, amount):
        """
        Debit ``from_id`` and credit ``to_id`` by ``amount``.

        Raises InvalidArgument (SELF_TRANSFER, INVALID_AMOUNT, INACTIVE,
        BALANCE_LIMIT_EXCEEDED), NotFound, InsufficientBalance, Busy or
        ConflictExhausted. Whatever is raised, neither record has been changed.
        """
        from_key = coerce_benefit_id(from_id)
        to_key = coerce_benefit_id(to_id)

        if (from_key is not None and from_key == to_key) or from_id == to_id:
            raise InvalidArgument('Cannot transfer a benefit to itself', kind='SELF_TRANSFER')

        amount = coerce_amount(amount)

        # A malformed id never resolves. A malformed destination is still
        # reported after the source, so the source is looked up first.
        if from_key is None:
            raise NotFound(f'Source benefit not found: {from_id}', which='from')
        guarded = [key for key in (from_key, to_key) if key is not None]

        def apply(records):
            source = records.get(from_key)
            target = records.get(to_key) if to_key is not None else None
            if source is None:
                raise NotFound(f'Source benefit not found: {from_key}', which='from')
            if target is None:
                raise NotFound(f'Destination benefit not found: {to_id}', which='to')
            if not source.active:
                raise InvalidArgument(f'Source benefit is inactive: {from_key}', kind='INACTIVE', which='from')
            if not target.active:
                raise InvalidArgument(f'Destination benefit is inactive: {to_key}', kind='INACTIVE', which='to')
            if source.balance < amount:
                raise InsufficientBalance(available=source.balance, requested=amount)
            if target.balance + amount >= BALANCE_LIMIT:
                raise InvalidArgument(
                    f'Destination balance would reach {BALANCE_LIMIT}: {to_key}',
                    kind='BALANCE_LIMIT_EXCEEDED',
                    which='to',
                )

            source.balance = source.balance - amount
            target.balance = target.balance + amount
            self.store.stage(source, target)

            return TransferReceipt(
                from_id=from_key,
                to_id=to_key,
                amount=amount,
                from_balance=source.balance.quantize(CENTS),
                to_balance=target.balance.quantize(CENTS),
                from_version=source.version,
                to_version=target.version,
            )

        return self.locking.execute(self.store, guarded, apply)


def get_transfer_engine():
    """Engine bound to the current app context's session and strategy."""
    return TransferEngine(BenefitStore(db.session), current_locking())
