"""
Concurrency strategies
Exclusive access to a set of benefit records for one unit of work.

A strategy is handed the ids it must guard and an ``operation`` that
receives ``{benefit_id: Benefit | None}`` (freshly read, ``None`` when the
id does not resolve). The operation validates, mutates and stages its
writes; the strategy commits, or rolls back on any failure.

Both strategies visit ids in ascending order, so two units of work over the
same pair of records can never wait on each other in a cycle.
"""

import logging
import random
import threading
import time
from contextlib import contextmanager
from benefit_service.errors import Busy, ConflictError, ConflictExhausted

logger = logging.getLogger(__name__)


def lock_order(benefit_ids):
    return sorted(set(benefit_ids))


class RecordLockTable:
    """Per-record mutexes shared by every thread of this process.

    Entries are reference counted and dropped once no thread holds or waits
    for them, so the table only ever contains records currently in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries = {}

    def _checkout(self, key):
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key):
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    def __len__(self):
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, keys, timeout):
        """Acquire every key in the given order, waiting at most ``timeout`` in total."""
        deadline = time.monotonic() + timeout
        held = []
        try:
            for key in keys:
                lock = self._checkout(key)
                if not lock.acquire(timeout=max(deadline - time.monotonic(), 0)):
                    self._checkin(key)
                    raise Busy(f'Timed out after {timeout}s waiting for benefit {key}')
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)


class LockingStrategy:
    name = None

    def execute(self, store, benefit_ids, operation):
        raise NotImplementedError


class PessimisticLocking(LockingStrategy):
    """Hold a blocking lock on every record for the whole transaction.

    Records are guarded twice: by an in-process mutex (the only row lock
    SQLite offers) and by ``SELECT ... FOR UPDATE`` for databases that
    support it, both taken in the same order and both bounded by
    ``lock_timeout``.
    """
    name = 'pessimistic'

    def __init__(self, lock_timeout=5.0):
        self.lock_timeout = lock_timeout
        self.locks = RecordLockTable()

    def execute(self, store, benefit_ids, operation):
        ordered = lock_order(benefit_ids)
        with self.locks.hold(ordered, self.lock_timeout):
            try:
                store.set_lock_timeout(self.lock_timeout)
                records = {benefit_id: store.lock_for_update(benefit_id) for benefit_id in ordered}
                result = operation(records)
                store.commit()
                return result
            except Exception:
                store.rollback()
                raise


class OptimisticLocking(LockingStrategy):
    """Read without locks and let the version check reject stale writes.

    On a conflict the whole operation is re-run against fresh state, up to
    ``max_attempts`` times. Business errors raised by the operation are
    never retried.
    """
    name = 'optimistic'

    def __init__(self, max_attempts=5, backoff=0.01):
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        self.max_attempts = max_attempts
        self.backoff = backoff

    def _pause(self, attempt):
        if self.backoff > 0:
            time.sleep(self.backoff * attempt * random.uniform(0.5, 1.5))

    def execute(self, store, benefit_ids, operation):
        ordered = lock_order(benefit_ids)
        for attempt in range(1, self.max_attempts + 1):
            try:
                records = {benefit_id: store.load_fresh(benefit_id) for benefit_id in ordered}
                result = operation(records)
                store.commit()
                return result
            except ConflictError:
                store.rollback()
                logger.info(
                    'Write conflict, retrying',
                    extra={'attempt': attempt, 'benefit_ids': [str(i) for i in ordered]},
                )
                if attempt < self.max_attempts:
                    self._pause(attempt)
            except Exception:
                store.rollback()
                raise
        raise ConflictExhausted(self.max_attempts)


STRATEGIES = {
    PessimisticLocking.name: PessimisticLocking,
    OptimisticLocking.name: OptimisticLocking,
}


def build_locking_strategy(config):
    name = config.get('CONCURRENCY_STRATEGY', PessimisticLocking.name)
    if name == PessimisticLocking.name:
        return PessimisticLocking(lock_timeout=config.get('LOCK_TIMEOUT_SECONDS', 5.0))
    if name == OptimisticLocking.name:
        return OptimisticLocking(
            max_attempts=config.get('OPTIMISTIC_MAX_ATTEMPTS', 5),
            backoff=config.get('OPTIMISTIC_BACKOFF_SECONDS', 0.01),
        )
    raise ValueError(f"Unknown CONCURRENCY_STRATEGY {name!r}, expected one of {sorted(STRATEGIES)}")
