import pytest
from unittest.mock import patch
from feedcurator.models.digest import Digest
from feedcurator.models.embedding import EmbeddingRecord
from feedcurator.models.source import Source
from feedcurator.models.user import FeedbackEvent, Interest, InterestSuggestion, LearnedPreference
from feedcurator.models.user_article import UserArticle
from feedcurator.services.vector_store import VectorBackend, VectorStore
from conftest import unit


def _user_article(db_session, reader, article, **kwargs):
    row = UserArticle(reader_id=reader.id, article_id=article.id, **kwargs)
    db_session.add(row)
    db_session.commit()
    return row


class TestHealthRoutes:
    def test_health(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.json['status'] == 'ok'

    def test_ready(self, client):
        resp = client.get('/ready')
        assert resp.status_code == 200
        assert resp.json['db'] is True
        assert resp.json['vector_backend'] == 'json'


class TestSourceRoutes:
    def test_add_and_list(self, client, reader):
        resp = client.post(f'/api/readers/{reader.id}/sources',
                           json={'name': 'Hacker News', 'url': 'https://news.ycombinator.com/rss'})
        assert resp.status_code == 201
        assert resp.json['health_state'] == 'healthy'

        resp = client.get(f'/api/readers/{reader.id}/sources')
        assert [s['name'] for s in resp.json] == ['Hacker News']

    def test_duplicate_url(self, client, reader, source):
        resp = client.post(f'/api/readers/{reader.id}/sources', json={'name': 'Again', 'url': source.url})
        assert resp.status_code == 409

    def test_missing_fields(self, client, reader):
        resp = client.post(f'/api/readers/{reader.id}/sources', json={'name': 'No URL'})
        assert resp.status_code == 400

    def test_delete_opts_out_without_touching_shared_feed(self, client, reader, source, make_reader):
        bob = make_reader('bob', sources=[source])

        resp = client.delete(f'/api/readers/{reader.id}/sources/{source.id}')
        assert resp.status_code == 200
        resp = client.get(f'/api/readers/{reader.id}/sources')
        assert resp.json[0]['subscribed'] is False
        assert resp.json[0]['is_enabled'] is True

        resp = client.get(f'/api/readers/{bob.id}/sources')
        assert resp.json[0]['subscribed'] is True

    def test_resubscribe_after_opt_out(self, client, reader, source):
        client.delete(f'/api/readers/{reader.id}/sources/{source.id}')
        resp = client.post(f'/api/readers/{reader.id}/sources', json={'name': 'Again', 'url': source.url})
        assert resp.status_code == 200
        assert resp.json['subscribed'] is True

    def test_same_url_shares_one_source(self, client, reader, source, make_reader):
        bob = make_reader('bob')
        resp = client.post(f'/api/readers/{bob.id}/sources', json={'name': 'Mine', 'url': source.url})
        assert resp.status_code == 201
        assert resp.json['id'] == source.id
        assert Source.query.count() == 1

    def test_unknown_reader(self, client):
        assert client.get('/api/readers/999/sources').status_code == 404


class TestProfileRoutes:
    def test_create_and_list_interests(self, client, reader):
        resp = client.post(f'/api/readers/{reader.id}/interests',
                           json={'category': 'AI / LLMs', 'description': 'Model releases', 'weight': 2})
        assert resp.status_code == 201
        assert resp.json['weight'] == 2.0

        client.post(f'/api/readers/{reader.id}/interests', json={'category': 'Space'})
        resp = client.get(f'/api/readers/{reader.id}/interests')
        assert [i['category'] for i in resp.json] == ['AI / LLMs', 'Space']

    def test_create_validation(self, client, reader):
        assert client.post(f'/api/readers/{reader.id}/interests', json={'category': ' '}).status_code == 400
        resp = client.post(f'/api/readers/{reader.id}/interests', json={'category': 'AI', 'weight': 'lots'})
        assert resp.status_code == 400
        resp = client.post(f'/api/readers/{reader.id}/interests', json={'category': 'AI', 'weight': 11})
        assert resp.status_code == 400

    def test_unknown_collection(self, client, reader):
        assert client.get(f'/api/readers/{reader.id}/hobbies').status_code == 404

    def test_text_change_invalidates_embedding(self, client, db_session, reader, interests):
        interest = interests[0]
        interest.expanded_description = 'Expanded text'
        VectorStore(VectorBackend.JSON).store('interest', interest.id, 'A', unit(1.0))
        db_session.commit()

        resp = client.put(f'/api/readers/{reader.id}/interests/{interest.id}',
                          json={'description': 'Something new'})
        assert resp.status_code == 200
        assert resp.json['description'] == 'Something new'
        assert resp.json['expanded_description'] is None
        assert EmbeddingRecord.query.filter_by(ref_type='interest', ref_id=interest.id).count() == 0

    def test_weight_change_keeps_embedding(self, client, db_session, reader, interests):
        interest = interests[0]
        VectorStore(VectorBackend.JSON).store('interest', interest.id, 'A', unit(1.0))
        db_session.commit()

        resp = client.put(f'/api/readers/{reader.id}/interests/{interest.id}',
                          json={'weight': 0.25, 'is_active': False})
        assert resp.status_code == 200
        assert resp.json['weight'] == 0.25
        assert resp.json['is_active'] is False
        assert EmbeddingRecord.query.filter_by(ref_type='interest', ref_id=interest.id).count() == 1

    def test_update_rejects_bad_active_flag(self, client, reader, interests):
        resp = client.put(f'/api/readers/{reader.id}/interests/{interests[0].id}', json={'is_active': 'no'})
        assert resp.status_code == 400

    def test_delete_removes_embedding(self, client, db_session, reader, exclusion):
        VectorStore(VectorBackend.JSON).store('exclusion', exclusion.id, 'x', unit(1.0))
        db_session.commit()

        resp = client.delete(f'/api/readers/{reader.id}/exclusions/{exclusion.id}')
        assert resp.status_code == 200
        assert EmbeddingRecord.query.count() == 0

    def test_other_readers_profile_not_found(self, client, db_session, reader, interests):
        from feedcurator.models.reader import Reader
        bob = Reader(username='bob')
        db_session.add(bob)
        db_session.commit()
        resp = client.put(f'/api/readers/{bob.id}/interests/{interests[0].id}', json={'weight': 1})
        assert resp.status_code == 404

    def test_create_schedules_refresh_when_scheduler_runs(self, client, reader):
        with patch('feedcurator.services.profile_service.enqueue_profile_refresh') as enqueue:
            resp = client.post(f'/api/readers/{reader.id}/exclusions', json={'category': 'Crypto'})
        enqueue.assert_called_once_with('exclusion', resp.json['id'])


class TestFeedbackRoutes:
    def test_sentiment_toggles(self, client, db_session, reader, make_article):
        article = make_article()
        _user_article(db_session, reader, article, relevance_score=0.8)
        url = f'/api/readers/{reader.id}/feedback'

        resp = client.post(url, json={'article_id': article.id, 'action': 'liked'})
        assert resp.status_code == 200
        assert resp.json['sentiment'] == 'liked'

        resp = client.post(url, json={'article_id': article.id, 'action': 'liked'})
        assert resp.json['sentiment'] is None

        resp = client.post(url, json={'article_id': article.id, 'action': 'disliked'})
        assert resp.json['sentiment'] == 'disliked'
        assert FeedbackEvent.query.filter_by(reader_id=reader.id).count() == 3

    def test_archive_requires_sentiment(self, client, db_session, reader, make_article):
        article = make_article()
        _user_article(db_session, reader, article)
        url = f'/api/readers/{reader.id}/feedback'

        assert client.post(url, json={'article_id': article.id, 'action': 'archived'}).status_code == 400
        client.post(url, json={'article_id': article.id, 'action': 'neutral'})
        resp = client.post(url, json={'article_id': article.id, 'action': 'archived'})
        assert resp.status_code == 200
        assert resp.json['is_archived'] is True

    def test_read_and_bookmark(self, client, db_session, reader, make_article):
        article = make_article()
        _user_article(db_session, reader, article)
        url = f'/api/readers/{reader.id}/feedback'

        assert client.post(url, json={'article_id': article.id, 'action': 'read'}).json['is_read'] is True
        assert client.post(url, json={'article_id': article.id, 'action': 'read'}).json['is_read'] is False
        assert client.post(url, json={'article_id': article.id, 'action': 'bookmark'}).json['is_bookmarked'] is True
        assert client.post(url, json={'article_id': article.id, 'action': 'unbookmark'}).json['is_bookmarked'] is False

    def test_invalid_action(self, client, db_session, reader, make_article):
        article = make_article()
        _user_article(db_session, reader, article)
        resp = client.post(f'/api/readers/{reader.id}/feedback', json={'article_id': article.id, 'action': 'love'})
        assert resp.status_code == 400

    def test_unknown_article(self, client, reader):
        resp = client.post(f'/api/readers/{reader.id}/feedback', json={'article_id': 12345, 'action': 'liked'})
        assert resp.status_code == 404

    def test_missing_fields(self, client, reader):
        resp = client.post(f'/api/readers/{reader.id}/feedback', json={'action': 'liked'})
        assert resp.status_code == 400


class TestDigestRoutes:
    def test_latest_without_digest(self, client, reader):
        assert client.get(f'/api/readers/{reader.id}/digests/latest').status_code == 404

    def test_latest_digest_lists_articles(self, client, db_session, reader, make_article):
        digest = Digest(reader_id=reader.id, provider='openai', article_count=2)
        db_session.add(digest)
        db_session.commit()
        high, low, archived = make_article(), make_article(), make_article()
        _user_article(db_session, reader, low, relevance_score=0.6, digest_id=digest.id)
        _user_article(db_session, reader, high, relevance_score=0.9, digest_id=digest.id)
        _user_article(db_session, reader, archived, relevance_score=0.7, digest_id=digest.id,
                      sentiment='liked', is_archived=True)

        resp = client.get(f'/api/readers/{reader.id}/digests/latest')
        assert resp.status_code == 200
        assert [a['article_id'] for a in resp.json['articles']] == [high.id, low.id]

        resp = client.get(f'/api/readers/{reader.id}/digests')
        assert [d['id'] for d in resp.json] == [digest.id]

        assert client.get(f'/api/readers/{reader.id}/digests/{digest.id}').status_code == 200
        assert client.get(f'/api/readers/{reader.id}/digests/{digest.id + 1}').status_code == 404


class TestPreferenceRoutes:
    def test_list_and_delete(self, client, db_session, reader):
        pref = LearnedPreference(reader_id=reader.id, preference_text='Likes long reads', confidence=0.7)
        db_session.add(pref)
        db_session.commit()

        resp = client.get(f'/api/readers/{reader.id}/preferences')
        assert [p['preference_text'] for p in resp.json] == ['Likes long reads']

        resp = client.delete(f'/api/readers/{reader.id}/preferences/{pref.id}')
        assert resp.status_code == 200
        assert LearnedPreference.query.count() == 0


class TestSuggestionRoutes:
    def _suggestion(self, db_session, reader, category):
        s = InterestSuggestion(reader_id=reader.id, category=category, confidence=0.7)
        db_session.add(s)
        db_session.commit()
        return s

    def test_list_accept_and_dismiss(self, client, db_session, reader):
        keep = self._suggestion(db_session, reader, 'Urban planning')
        drop = self._suggestion(db_session, reader, 'Gossip')

        resp = client.get(f'/api/readers/{reader.id}/suggestions')
        assert {s['category'] for s in resp.json} == {'Urban planning', 'Gossip'}

        resp = client.post(f'/api/readers/{reader.id}/suggestions/{keep.id}/accept', json={'weight': 0.8})
        assert resp.status_code == 201
        assert resp.json['interest']['category'] == 'Urban planning'
        assert resp.json['interest']['weight'] == 0.8

        resp = client.post(f'/api/readers/{reader.id}/suggestions/{drop.id}/dismiss')
        assert resp.json['status'] == 'dismissed'
        assert client.get(f'/api/readers/{reader.id}/suggestions').json == []

    def test_already_resolved(self, client, db_session, reader):
        s = self._suggestion(db_session, reader, 'Urban planning')
        client.post(f'/api/readers/{reader.id}/suggestions/{s.id}/dismiss')
        resp = client.post(f'/api/readers/{reader.id}/suggestions/{s.id}/accept')
        assert resp.status_code == 409
        assert Interest.query.count() == 0

    def test_bad_weight_and_unknown_decision(self, client, db_session, reader):
        s = self._suggestion(db_session, reader, 'Urban planning')
        resp = client.post(f'/api/readers/{reader.id}/suggestions/{s.id}/accept', json={'weight': 'lots'})
        assert resp.status_code == 400
        assert client.post(f'/api/readers/{reader.id}/suggestions/{s.id}/maybe').status_code == 404


class TestAdminRoutes:
    def test_requires_key(self, client):
        assert client.get('/api/admin/settings').status_code == 401
        assert client.get('/api/admin/settings', headers={'X-Admin-Key': 'wrong'}).status_code == 401

    def test_bearer_token_accepted(self, client, app):
        headers = {'Authorization': f"Bearer {app.config['ADMIN_API_KEY']}"}
        assert client.get('/api/admin/settings', headers=headers).status_code == 200

    def test_disabled_without_configured_key(self, client, app, admin_headers):
        with patch.dict(app.config, {'ADMIN_API_KEY': None}):
            assert client.get('/api/admin/settings', headers=admin_headers).status_code == 503

    def test_get_and_update_settings(self, client, admin_headers):
        resp = client.get('/api/admin/settings', headers=admin_headers)
        assert resp.json['embedding_llm_threshold'] == 0.35

        resp = client.put('/api/admin/settings', headers=admin_headers,
                          json={'embedding_llm_threshold': 0.4, 'max_llm_candidates': 20})
        assert resp.status_code == 200
        assert resp.json['embedding_llm_threshold'] == 0.4

        resp = client.get('/api/admin/settings', headers=admin_headers)
        assert resp.json['max_llm_candidates'] == 20

    def test_invalid_settings_rejected(self, client, admin_headers):
        resp = client.put('/api/admin/settings', headers=admin_headers, json={'llm_batch_size': 0})
        assert resp.status_code == 400
        resp = client.put('/api/admin/settings', headers=admin_headers, json={'max_llm_candidates': 'inf'})
        assert resp.status_code == 400
        resp = client.put('/api/admin/settings', headers=admin_headers, json={'embedding_llm_threshold': 'nan'})
        assert resp.status_code == 400
        resp = client.put('/api/admin/settings', headers=admin_headers, json={'nope': 1})
        assert resp.status_code == 400

    def test_readers(self, client, admin_headers):
        resp = client.post('/api/admin/readers', headers=admin_headers, json={'username': 'carol'})
        assert resp.status_code == 201
        assert client.post('/api/admin/readers', headers=admin_headers,
                           json={'username': 'carol'}).status_code == 409
        resp = client.get('/api/admin/readers', headers=admin_headers)
        assert [r['username'] for r in resp.json] == ['carol']

    def test_source_health_summary(self, client, db_session, admin_headers, source):
        source.consecutive_failures = 3
        db_session.commit()
        resp = client.get('/api/admin/sources/health', headers=admin_headers)
        assert resp.json['summary'] == {'healthy': 0, 'degraded': 1, 'disabled': 0}
        assert resp.json['sources'][0]['subscribers'] == 1

    def test_ingest_trigger(self, client, admin_headers):
        with patch('feedcurator.pipeline.orchestrator.run_ingestion') as run:
            resp = client.post('/api/admin/ingest', headers=admin_headers, json={'reader_ids': [1]})
            from feedcurator.routes import admin
            admin._ingest_thread.join(timeout=5)

        assert resp.status_code == 202
        run.assert_called_once_with(trigger='manual', reader_ids=[1])

    def test_ingest_rejects_bad_reader_ids(self, client, admin_headers):
        resp = client.post('/api/admin/ingest', headers=admin_headers, json={'reader_ids': 'all'})
        assert resp.status_code == 400

    def test_runs(self, client, db_session, admin_headers):
        from feedcurator.services.run_logger import RunLogger
        run_log = RunLogger(trigger='manual')
        run_log.log('start', 'hello')
        run_log.persist('success', summary={'readers': {}})

        resp = client.get('/api/admin/runs', headers=admin_headers)
        assert resp.json[0]['status'] == 'success'
        resp = client.get(f'/api/admin/runs/{run_log.run_id}', headers=admin_headers)
        assert resp.json['events'][0]['message'] == 'hello'

    def test_flags(self, client, admin_headers):
        resp = client.put('/api/admin/flags/score_semantic_duplicates', headers=admin_headers, json={'value': True})
        assert resp.json['value'] is True
        resp = client.put('/api/admin/flags/score_semantic_duplicates', headers=admin_headers, json={'value': False})
        assert resp.json['value'] is False
        assert client.put('/api/admin/flags/x', headers=admin_headers, json={'value': 'yes'}).status_code == 400


class TestCostRoutes:
    def test_today(self, client, admin_headers):
        resp = client.get('/api/cost/today', headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json['calls_count'] == 0
        assert resp.json['by_purpose'] == {}

    def test_requires_key(self, client):
        assert client.get('/api/cost/logs').status_code == 401
