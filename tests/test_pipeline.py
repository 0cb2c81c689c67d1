import json
import random
import re
import pytest
from datetime import timedelta
from unittest.mock import patch
from feedcurator import feature_flags
from feedcurator.integrations.llm_gateway import LLMGateway, LLMUnavailableError
from feedcurator.models.article import Article
from feedcurator.models.digest import Digest
from feedcurator.models.embedding import EmbeddingRecord
from feedcurator.models.ingestion_run import IngestionRun
from feedcurator.models.reader import Reader
from feedcurator.models.source import Source, Subscription
from feedcurator.models.user import Interest
from feedcurator.models.user_article import UserArticle
from feedcurator.pipeline.orchestrator import run_ingestion
from feedcurator.pipeline.relevance import drop_covered_duplicates, pending_articles, score_reader
from feedcurator.services.embedding_service import EmbeddingProviderError, EmbeddingService
from feedcurator.services.run_logger import RunLogger
from feedcurator.services.vector_store import VectorBackend, VectorStore
from conftest import unit, with_similarities

# Article text prefix -> vector. Interest A embeds to e0, B to e1.
VECTORS = {
    'A': unit(1.0),
    'B': unit(0.0, 1.0),
    'X': with_similarities(0.5, 0.1, axis=2),    # blended 0.4325 -> LLM
    'Y': with_similarities(0.25, 0.05, axis=3),  # blended 0.21625 -> serendipity band
    'Z': with_similarities(0.05, 0.0, axis=4),   # blended 0.0425 -> skipped
    'Celebrity': unit(0.0, 0.0, 0.0, 0.0, 0.0, 1.0),
}


def fake_embed_texts(texts):
    return [VECTORS[text.split(' ')[0].rstrip(':.')] for text in texts], 5 * len(texts)


def llm_reply(scores):
    """complete() double that scores each prompted article by its title prefix."""
    def _complete(prompt, **kwargs):
        items = []
        for article_id, title in re.findall(r'ID: (\d+)\nTitle: (\S+)', prompt):
            key = title.rstrip(':')
            if key in scores:
                score, serendipity = scores[key]
                items.append({
                    'article_id': int(article_id),
                    'relevance_score': score,
                    'summary': f'Summary of {key}',
                    'relevance_reason': 'Serendipity' if serendipity else 'Matches: A',
                    'is_serendipity': serendipity,
                })
        return {'content': json.dumps(items)}
    return _complete


def _feed_entry(source_id, key, title):
    url = f'https://example.com/{key}'
    return {'source_id': source_id, 'title': title, 'url': url,
            'content': None, 'external_id': url, 'published_at': None}


@pytest.fixture
def embedding_service(app):
    return EmbeddingService(store=VectorStore(VectorBackend.JSON, dimensions=512))


@pytest.fixture
def xyz(make_article):
    return {
        'X': make_article(title='X: a major language model release'),
        'Y': make_article(title='Y: a loosely related robotics story'),
        'Z': make_article(title='Z: local sports results roundup'),
    }


class TestScoreReader:
    def test_three_article_scenario(self, db_session, reader, interests, xyz, settings,
                                    embedding_service, fake_gateway, now):
        fake_gateway.complete.side_effect = llm_reply({'X': (0.9, False), 'Y': (0.45, True)})

        with patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts):
            result = score_reader(
                reader, list(xyz.values()), settings, fake_gateway, embedding_service,
                rng=random.Random(0), now=now,
            )

        assert result['mode'] == 'embedding'
        assert result['embedding_scored'] == 3
        assert result['llm_candidates'] == 2
        assert result['serendipity_sampled'] == 1
        assert result['skipped'] == 1
        assert result['digest_articles'] == 2

        prompt = fake_gateway.complete.call_args[0][0]
        main, serendipity = prompt.split('## Serendipity Candidates')
        assert 'Title: X:' in main
        assert 'Title: Y:' in serendipity
        assert 'Title: Z:' not in prompt

        rows = {r.article_id: r for r in UserArticle.query.filter_by(reader_id=reader.id)}
        x, y, z = rows[xyz['X'].id], rows[xyz['Y'].id], rows[xyz['Z'].id]
        assert x.embedding_score == pytest.approx(0.4325, rel=1e-4)
        assert x.best_interest_id == interests[0].id
        assert x.relevance_score == 0.9
        assert y.embedding_score == pytest.approx(0.21625, rel=1e-4)
        assert y.is_serendipity is True
        assert z.embedding_score == pytest.approx(0.0425, rel=1e-3)
        assert z.relevance_score is None

        digest = db_session.get(Digest, result['digest_id'])
        assert [e.article_id for e in digest.entries] == [xyz['X'].id, xyz['Y'].id]
        assert z.digest_id is None

    def test_exclusion_blocks_candidate(self, db_session, reader, interests, exclusion, make_article,
                                        settings, embedding_service, fake_gateway, now):
        # the article embeds onto the exclusion's own vector
        gossip = make_article(title='Celebrity wedding pictures leaked')
        fake_gateway.complete.side_effect = llm_reply({})

        with patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts):
            result = score_reader(reader, [gossip], settings, fake_gateway, embedding_service, now=now)

        assert result['excluded'] == 1
        assert result['llm_candidates'] == 0
        fake_gateway.complete.assert_not_called()

    def test_generative_only_when_cycle_embeddings_failed(self, db_session, reader, interests, xyz,
                                                          settings, embedding_service, fake_gateway, now):
        fake_gateway.complete.side_effect = llm_reply({'X': (0.9, False), 'Y': (0.2, False), 'Z': (0.1, False)})

        with patch.object(EmbeddingService, 'embed_texts') as embed:
            result = score_reader(reader, list(xyz.values()), settings, fake_gateway, embedding_service,
                                  embeddings_ok=False, now=now)

        embed.assert_not_called()
        assert result['mode'] == 'generative_only'
        assert result['llm_candidates'] == 3
        assert result['digest_articles'] == 1
        row = UserArticle.query.filter_by(reader_id=reader.id, article_id=xyz['X'].id).one()
        assert row.embedding_score is None

    def test_generative_only_when_profile_embedding_fails(self, db_session, reader, interests, xyz,
                                                          settings, embedding_service, fake_gateway, now):
        fake_gateway.complete.side_effect = llm_reply({})
        with patch.object(EmbeddingService, 'embed_texts', side_effect=EmbeddingProviderError('down')):
            result = score_reader(reader, list(xyz.values()), settings, fake_gateway, embedding_service, now=now)

        assert result['mode'] == 'generative_only'
        assert result['llm_candidates'] == 3

    def test_generative_only_without_interests(self, db_session, reader, xyz, settings,
                                               embedding_service, fake_gateway, now):
        fake_gateway.complete.side_effect = llm_reply({})
        with patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts):
            result = score_reader(reader, list(xyz.values()), settings, fake_gateway, embedding_service, now=now)

        assert result['mode'] == 'generative_only'
        assert result['llm_candidates'] == 3

    def test_duplicates_of_own_articles_not_scored(self, db_session, reader, interests, xyz, settings,
                                                  embedding_service, fake_gateway, now):
        xyz['X'].is_duplicate = True
        xyz['X'].duplicate_of_id = xyz['Y'].id
        db_session.commit()
        fake_gateway.complete.side_effect = llm_reply({})

        with patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts):
            result = score_reader(reader, list(xyz.values()), settings, fake_gateway, embedding_service,
                                  embeddings_ok=False, now=now)
        assert result['pending'] == 2

        feature_flags.set_flag('score_semantic_duplicates', True)
        try:
            with patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts):
                result = score_reader(reader, list(xyz.values()), settings, fake_gateway, embedding_service,
                                      embeddings_ok=False, now=now)
            assert result['pending'] == 3
        finally:
            feature_flags.set_flag('score_semantic_duplicates', False)

    def test_duplicate_of_unseen_article_is_kept(self, db_session, reader, make_article):
        # canonical copy lives in a feed this reader does not subscribe to
        other_feed = Source(name='Elsewhere', url='https://elsewhere.example/feed')
        db_session.add(other_feed)
        db_session.commit()
        canonical = make_article(source_id=other_feed.id)
        mine = make_article(is_duplicate=True, duplicate_of_id=canonical.id)

        assert drop_covered_duplicates(reader.id, [mine]) == [mine]

    def test_duplicate_of_already_scored_article_is_dropped(self, db_session, reader, make_article):
        canonical = make_article()
        mine = make_article(is_duplicate=True, duplicate_of_id=canonical.id)
        db_session.add(UserArticle(reader_id=reader.id, article_id=canonical.id, relevance_score=0.7))
        db_session.commit()

        assert drop_covered_duplicates(reader.id, [mine]) == []

    def test_default_scored_articles_stay_pending(self, db_session, reader, interests, xyz, settings,
                                                  embedding_service, fake_gateway, now):
        fake_gateway.complete.side_effect = LLMUnavailableError('no key')

        with patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts):
            result = score_reader(reader, list(xyz.values()), settings, fake_gateway, embedding_service,
                                  rng=random.Random(0), now=now)

        # neutral 0.5 meets min_relevance_score, so defaults can reach a digest
        assert result['llm_scored'] == 2
        row = UserArticle.query.filter_by(reader_id=reader.id, article_id=xyz['X'].id).one()
        assert row.relevance_reason == 'Default score (API unavailable)'
        assert row.is_default_scored

    def test_pending_articles(self, db_session, reader, make_article, now):
        fresh = make_article()
        old = make_article(ingested_at=now - timedelta(days=8))
        judged = make_article()
        defaulted = make_article()
        db_session.add_all([
            UserArticle(reader_id=reader.id, article_id=judged.id, relevance_score=0.7, relevance_reason='Matches: A'),
            UserArticle(reader_id=reader.id, article_id=defaulted.id, relevance_score=0.5,
                        relevance_reason='Default score (scoring error)'),
        ])
        db_session.commit()

        ids = [a.id for a in pending_articles(reader, now=now)]
        assert ids == [fresh.id, defaulted.id]
        assert old.id not in ids

    def test_pending_articles_follow_subscription(self, db_session, reader, source, make_article, now):
        article = make_article()
        assert [a.id for a in pending_articles(reader, now=now)] == [article.id]

        Subscription.query.filter_by(reader_id=reader.id, source_id=source.id).one().is_enabled = False
        db_session.commit()
        assert pending_articles(reader, now=now) == []


class TestRunIngestion:
    def test_end_to_end(self, db_session, reader, source, interests):
        entries = [
            {'source_id': source.id, 'title': title, 'url': f'https://example.com/{key}',
             'content': None, 'external_id': f'https://example.com/{key}', 'published_at': None}
            for key, title in (('x', 'X: a major language model release'),
                               ('y', 'Y: a loosely related robotics story'),
                               ('z', 'Z: local sports results roundup'))
        ]

        with patch('feedcurator.pipeline.acquire.fetch_feed', return_value=entries), \
                patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts), \
                patch.object(LLMGateway, 'complete', side_effect=llm_reply({'X': (0.9, False), 'Y': (0.3, False)})):
            summary = run_ingestion(trigger='manual', rng=random.Random(0))

        assert summary['embeddings_ok'] is True
        result = summary['readers'][reader.id]
        assert result['new_articles'] == 3
        assert result['mode'] == 'embedding'
        assert result['llm_candidates'] == 2
        assert result['digest_articles'] == 1

        run = db_session.get(IngestionRun, summary['run_id'])
        assert run.status == 'success'
        assert run.trigger == 'manual'
        assert str(reader.id) in run.summary_json['readers']
        assert any(e['phase'] == 'embed' for e in run.events_json)

    def test_embedding_outage_runs_generative_only(self, db_session, reader, source, interests):
        entries = [{'source_id': source.id, 'title': 'X: a major language model release',
                    'url': 'https://example.com/x', 'content': None,
                    'external_id': 'https://example.com/x', 'published_at': None}]

        with patch('feedcurator.pipeline.acquire.fetch_feed', return_value=entries), \
                patch.object(EmbeddingService, 'embed_texts', side_effect=EmbeddingProviderError('down')), \
                patch.object(LLMGateway, 'complete', side_effect=llm_reply({'X': (0.8, False)})):
            summary = run_ingestion(trigger='manual')

        assert summary['embeddings_ok'] is False
        assert summary['readers'][reader.id]['mode'] == 'generative_only'
        assert summary['readers'][reader.id]['digest_articles'] == 1

    def test_shared_feed_stored_and_embedded_once(self, db_session, reader, source, interests, make_reader):
        bob = make_reader('bob', sources=[source])
        db_session.add(Interest(reader_id=bob.id, category='A', weight=1.0))
        db_session.commit()
        entries = [_feed_entry(source.id, 'x', 'X: a major language model release')]

        with patch('feedcurator.pipeline.acquire.fetch_feed', return_value=entries) as fetch, \
                patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts), \
                patch.object(LLMGateway, 'complete', side_effect=llm_reply({'X': (0.9, False)})):
            summary = run_ingestion(trigger='manual', rng=random.Random(0))

        assert fetch.call_count == 1
        assert Article.query.count() == 1
        assert EmbeddingRecord.query.filter_by(ref_type='article').count() == 1
        for r in (reader, bob):
            assert summary['readers'][r.id]['new_articles'] == 1
            assert summary['readers'][r.id]['llm_candidates'] == 1
            assert summary['readers'][r.id]['digest_articles'] == 1

    def test_duplicate_from_another_readers_feed_is_still_scored(self, db_session, reader, source,
                                                                interests, make_reader):
        feed_b = Source(name='Feed B', url='https://b.example/feed.xml')
        db_session.add(feed_b)
        db_session.commit()
        bob = make_reader('bob', sources=[feed_b])
        db_session.add(Interest(reader_id=bob.id, category='A', weight=1.0))
        db_session.commit()

        def fake_fetch(source_id, url, max_items=None, timeout=10):
            if source_id == source.id:
                return [_feed_entry(source_id, 'a', 'X: a major language model release')]
            return [_feed_entry(source_id, 'b', 'X: the same language model release, retold')]

        with patch('feedcurator.pipeline.acquire.fetch_feed', side_effect=fake_fetch), \
                patch.object(EmbeddingService, 'embed_texts', side_effect=fake_embed_texts), \
                patch.object(LLMGateway, 'complete', side_effect=llm_reply({'X': (0.9, False)})):
            summary = run_ingestion(trigger='manual', rng=random.Random(0))

        bobs_copy = Article.query.filter_by(source_id=feed_b.id).one()
        assert bobs_copy.is_duplicate is True
        assert summary['readers'][reader.id]['digest_articles'] == 1
        assert summary['readers'][bob.id]['llm_candidates'] == 1
        assert summary['readers'][bob.id]['digest_articles'] == 1
        assert UserArticle.query.filter_by(reader_id=bob.id, article_id=bobs_copy.id).one().digest_id

    def test_one_reader_failure_is_isolated(self, db_session, reader, source):
        bob = Reader(username='bob')
        db_session.add(bob)
        db_session.commit()

        real_score_reader = score_reader

        def flaky(r, *args, **kwargs):
            if r.id == reader.id:
                raise RuntimeError('scoring exploded')
            return real_score_reader(r, *args, **kwargs)

        with patch('feedcurator.pipeline.acquire.fetch_feed', return_value=[]), \
                patch('feedcurator.pipeline.orchestrator.score_reader', side_effect=flaky):
            summary = run_ingestion(trigger='manual')

        assert summary['readers'][reader.id]['digest_id'] is None
        assert summary['readers'][reader.id]['mode'] is None
        assert bob.id in summary['readers']
        run = db_session.get(IngestionRun, summary['run_id'])
        assert run.status == 'success'
        assert any(e['level'] == 'error' and e['phase'] == 'relevance' for e in run.events_json)

    def test_reader_filter(self, db_session, reader):
        bob = Reader(username='bob')
        db_session.add(bob)
        db_session.commit()

        summary = run_ingestion(trigger='manual', reader_ids=[bob.id])
        assert list(summary['readers']) == [bob.id]
        assert Article.query.count() == 0


class TestRunLogger:
    def test_persists_events_and_summary(self, db_session):
        run_log = RunLogger(trigger='manual', provider='openai')
        run_log.log('fetch', 'fetched', {'count': 3})
        run_log.warn('embed', 'slow')

        assert run_log.persist('success', summary={'readers': {}})
        run = db_session.get(IngestionRun, run_log.run_id)
        assert run.status == 'success'
        assert [e['level'] for e in run.events_json] == ['info', 'warn']
        assert run.duration_ms is not None

    def test_events_capped(self, db_session):
        run_log = RunLogger()
        for i in range(1100):
            run_log.log('fetch', f'event {i}')
        assert len(run_log.events) == 1000
