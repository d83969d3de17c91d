"""
Benefit Service
Create, read, update and soft-delete benefits.

Updates and deletes go through the same concurrency strategy as transfers,
so they never interleave with a transfer touching the same record.
"""

from decimal import Decimal, InvalidOperation
from benefit_service.errors import InvalidArgument, NotFound, StaleVersion
from benefit_service.extensions import current_locking, db
from benefit_service.models.benefit import BALANCE_LIMIT, CENTS, is_whole_cents
from benefit_service.services.benefit_store import BenefitStore
from benefit_service.services.transfer_service import coerce_benefit_id

NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 255


def _store():
    return BenefitStore(db.session)


def _resolve_id(benefit_id):
    key = coerce_benefit_id(benefit_id)
    if key is None:
        raise NotFound(f'Benefit not found: {benefit_id}')
    return key


def _parse_name(value):
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument('name is required')
    name = value.strip()
    if len(name) > NAME_MAX_LENGTH:
        raise InvalidArgument(f'name must be at most {NAME_MAX_LENGTH} characters')
    return name


def _parse_description(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidArgument('description must be a string')
    if len(value) > DESCRIPTION_MAX_LENGTH:
        raise InvalidArgument(f'description must be at most {DESCRIPTION_MAX_LENGTH} characters')
    return value


def _parse_balance(data):
    # legacy clients send 'valor'
    value = data.get('balance')
    if value is None:
        value = data.get('valor')
    if value is None or isinstance(value, bool):
        raise InvalidArgument('balance is required')
    try:
        balance = Decimal(str(value) if isinstance(value, float) else value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgument('balance must be a decimal number') from None
    if not balance.is_finite() or balance <= 0:
        raise InvalidArgument('balance must be positive')
    if balance >= BALANCE_LIMIT:
        raise InvalidArgument(f'balance must be below {BALANCE_LIMIT}')
    if not is_whole_cents(balance):
        raise InvalidArgument('balance must have at most 2 decimal places')
    return balance.quantize(CENTS)


def _parse_active(value, default):
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidArgument('active must be a boolean')
    return value


def create_benefit(data):
    data = data or {}
    return _store().create(
        name=_parse_name(data.get('name')),
        description=_parse_description(data.get('description')),
        balance=_parse_balance(data),
        active=_parse_active(data.get('active'), True),
    )


def get_benefit(benefit_id):
    return _store().get(_resolve_id(benefit_id))


def list_benefits():
    return _store().list()


def list_active_benefits():
    return _store().list_active()


def search_benefits(name):
    if not name or not name.strip():
        raise InvalidArgument('Query parameter name is required')
    return _store().find_by_name_contains(name.strip())


def update_benefit(benefit_id, data):
    """
    Replace name, description and balance; ``active`` only when given.
    If ``version`` is supplied it must match the stored version.
    """
    key = _resolve_id(benefit_id)
    data = data or {}
    name = _parse_name(data.get('name'))
    description = _parse_description(data.get('description'))
    balance = _parse_balance(data)
    active = _parse_active(data.get('active'), None)
    expected_version = data.get('version')
    if expected_version is not None and (isinstance(expected_version, bool) or not isinstance(expected_version, int)):
        raise InvalidArgument('version must be an integer')

    store = _store()

    def apply(records):
        benefit = records[key]
        if benefit is None:
            raise NotFound(f'Benefit not found: {key}')
        if expected_version is not None and benefit.version != expected_version:
            raise StaleVersion(expected=expected_version, current=benefit.version)
        benefit.name = name
        benefit.description = description
        benefit.balance = balance
        if active is not None:
            benefit.active = active
        store.stage(benefit)
        return benefit

    return current_locking().execute(store, [key], apply)


def delete_benefit(benefit_id):
    """Soft delete: the record stays readable with active=False."""
    key = _resolve_id(benefit_id)
    store = _store()

    def apply(records):
        benefit = records[key]
        if benefit is None:
            raise NotFound(f'Benefit not found: {key}')
        benefit.active = False
        store.stage(benefit)
        return benefit

    return current_locking().execute(store, [key], apply)
