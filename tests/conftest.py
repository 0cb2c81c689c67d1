import os
import pytest
import numpy as np
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock

# Set test env vars before importing app
os.environ['FF_SCORE_SEMANTIC_DUPLICATES'] = 'false'

from feedcurator import create_app
from feedcurator.extensions import db as _db
from feedcurator.models.reader import Reader
from feedcurator.models.source import Source, Subscription
from feedcurator.models.article import Article
from feedcurator.models.user import Interest, Exclusion
from feedcurator.services.settings_service import ScoringSettings
from config import TestConfig

DIM = 512


@pytest.fixture(scope='session')
def app():
    """Create app with test config."""
    app = create_app(TestConfig)
    return app


@pytest.fixture(autouse=True)
def setup_db(app):
    """Create tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(app):
    return {'X-Admin-Key': app.config['ADMIN_API_KEY']}


@pytest.fixture
def db_session(app):
    with app.app_context():
        yield _db.session


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return ScoringSettings()


@pytest.fixture
def reader(db_session, now):
    """A long-tenured reader (account older than the new-account window)."""
    r = Reader(username='alice', created_at=now - timedelta(days=90))
    db_session.add(r)
    db_session.commit()
    return r


@pytest.fixture
def source(db_session, reader):
    """A feed the default reader subscribes to."""
    s = Source(name='Example Feed', url='https://example.com/feed.xml')
    db_session.add(s)
    db_session.flush()
    db_session.add(Subscription(reader_id=reader.id, source_id=s.id))
    db_session.commit()
    return s


@pytest.fixture
def make_reader(db_session, now):
    """Factory: a long-tenured reader, optionally subscribed to some sources."""
    def _make(username, sources=(), **kwargs):
        r = Reader(username=username, created_at=kwargs.pop('created_at', now - timedelta(days=90)), **kwargs)
        db_session.add(r)
        db_session.flush()
        for s in sources:
            db_session.add(Subscription(reader_id=r.id, source_id=s.id))
        db_session.commit()
        return r

    return _make


@pytest.fixture
def make_article(db_session, source, now):
    """Factory: insert an article ingested at ``now`` unless told otherwise."""
    counter = {'n': 0}

    def _make(title=None, content='Body text for the article.', published_at=None,
              ingested_at=None, url=None, **kwargs):
        counter['n'] += 1
        n = counter['n']
        article = Article(
            source_id=kwargs.pop('source_id', source.id),
            external_id=url or f'https://example.com/articles/{n}',
            title=title or f'Article number {n} about things',
            url=url or f'https://example.com/articles/{n}',
            raw_content=content,
            published_at=published_at,
            ingested_at=ingested_at or now,
            **kwargs,
        )
        db_session.add(article)
        db_session.commit()
        return article

    return _make


@pytest.fixture
def interests(db_session, reader):
    """Interests A (weight 1.0) and B (weight 0.5)."""
    a = Interest(reader_id=reader.id, category='A', weight=1.0)
    b = Interest(reader_id=reader.id, category='B', weight=0.5)
    db_session.add_all([a, b])
    db_session.commit()
    return a, b


@pytest.fixture
def exclusion(db_session, reader):
    e = Exclusion(reader_id=reader.id, category='Celebrity gossip')
    db_session.add(e)
    db_session.commit()
    return e


def unit(*components):
    """512-dim vector with the given leading components."""
    vec = np.zeros(DIM, dtype=np.float32)
    vec[:len(components)] = components
    return vec


def with_similarities(sim_a, sim_b, axis=2):
    """Unit vector whose cosine with e0 is sim_a and with e1 is sim_b.

    The remainder goes on ``axis`` so vectors built on different axes stay
    far apart from each other.
    """
    vec = unit(sim_a, sim_b)
    vec[axis] = float(np.sqrt(max(1.0 - sim_a ** 2 - sim_b ** 2, 0.0)))
    return vec


@pytest.fixture
def fake_gateway():
    """Gateway double; set ``complete.return_value`` or ``side_effect`` per test."""
    gateway = MagicMock()
    gateway.provider = 'openai'
    return gateway
