import os
import shutil
import tempfile
import unittest
from decimal import Decimal
from benefit_service.app import create_app
from benefit_service.extensions import db
from benefit_service.services.benefit_store import BenefitStore


class BenefitTestCase(unittest.TestCase):
    """Fresh app and empty in-memory database per test."""

    strategy = 'pessimistic'

    def make_config(self):
        return {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite://',
            'CONCURRENCY_STRATEGY': self.strategy,
            'OPTIMISTIC_BACKOFF_SECONDS': 0,
            'LOG_LEVEL': 'WARNING',
            'LOG_FORMAT': 'text',
        }

    def setUp(self):
        self.app = create_app(self.make_config())
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.client = self.app.test_client()
        self.store = BenefitStore(db.session)

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
        self.ctx.pop()

    def make_benefit(self, balance='1000.00', name='Benefit', active=True, description=None):
        benefit = self.store.create(
            name=name,
            balance=Decimal(balance),
            description=description,
            active=active,
        )
        return benefit.benefit_id

    def reload(self, benefit_id):
        db.session.expire_all()
        return self.store.get(benefit_id)


class FileDatabaseTestCase(BenefitTestCase):
    """Same as BenefitTestCase but backed by a file so threads get their own connections."""

    def make_config(self):
        self.tmpdir = tempfile.mkdtemp(prefix='benefits-')
        config = super().make_config()
        config.update({
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{os.path.join(self.tmpdir, 'benefits.db')}",
            'SQLALCHEMY_ENGINE_OPTIONS': {
                'connect_args': {'timeout': 30, 'check_same_thread': False},
                'pool_size': 20,
                'max_overflow': 20,
            },
            'LOCK_TIMEOUT_SECONDS': 30,
            'OPTIMISTIC_MAX_ATTEMPTS': 500,
            'OPTIMISTIC_BACKOFF_SECONDS': 0.002,
        })
        return config

    def tearDown(self):
        super().tearDown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)
