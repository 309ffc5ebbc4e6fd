import pytest
from datetime import datetime, timedelta

from awardvote import create_app, db
from awardvote.config import TestingConfig
from awardvote.database.models import Category, Nominee
from awardvote.database.queries import save_voting_configuration


class FrozenClock:
    """Stands in for awardvote.timeutil.utcnow()"""
    def __init__(self, start):
        self._now = start

    def advance(self, **kwargs):
        self._now += timedelta(**kwargs)

    def set(self, when):
        self._now = when

    def utcnow(self):
        return self._now


@pytest.fixture
def start_time():
    return datetime(2025, 10, 23, 12, 0, 0)


@pytest.fixture
def frozen_clock(monkeypatch, start_time):
    clock = FrozenClock(start_time)
    import awardvote.timeutil as timeutil_mod
    monkeypatch.setattr(timeutil_mod, 'utcnow', clock.utcnow)
    return clock


@pytest.fixture
def app(tmp_path):
    class Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'awardvote.db'}"
        AUDIT_LOG_DIR = str(tmp_path / 'logs')
        ADMIN_EMAILS = 'boss@x.com'
        # concurrent writers wait for the SQLite lock instead of failing
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30}}

    app = create_app(Config)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def services(app):
    return app.extensions['awardvote']


@pytest.fixture
def outbox(services):
    return services.email_sink.outbox


@pytest.fixture
def ballot_data(app):
    """Three categories: c1 (n1, n2), c2 (n5), c3 (n6, n7)."""
    db.session.add_all([
        Category(id='c1', name='Best Picture', display_order=1),
        Category(id='c2', name='Best Director', display_order=2),
        Category(id='c3', name='Best Score', display_order=3),
    ])
    db.session.add_all([
        Nominee(id='n1', category_id='c1', name='First'),
        Nominee(id='n2', category_id='c1', name='Second'),
        Nominee(id='n5', category_id='c2', name='Fifth'),
        Nominee(id='n6', category_id='c3', name='Sixth'),
        Nominee(id='n7', category_id='c3', name='Seventh'),
    ])
    db.session.commit()


@pytest.fixture
def voting_open(app):
    return save_voting_configuration({'voting_open': True})


@pytest.fixture
def voter(services):
    return services.authenticator.authenticate('a@x.com')
