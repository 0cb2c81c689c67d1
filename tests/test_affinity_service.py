import json
import pytest
from feedcurator.integrations.llm_gateway import LLMProviderError
from feedcurator.models.user import FeedbackEvent, Interest, InterestSuggestion
from feedcurator.services.affinity_service import AffinityService

SUGGESTED = json.dumps([
    {'category': 'a', 'confidence': 0.9},
    {'category': 'Urban planning', 'description': 'Zoning and transit', 'related_interests': ['A'],
     'reasoning': 'Liked several zoning stories', 'confidence': 0.8},
    {'category': 'Gossip', 'confidence': 0.9},
    {'category': 'Weak signal', 'confidence': 0.1},
    {'category': 'urban planning', 'confidence': 0.7},
    {'category': 'Astronomy', 'confidence': 'high'},
])


@pytest.fixture
def liked(db_session, reader, make_article):
    articles = [make_article(title=f'Zoning story number {n}') for n in range(5)]
    db_session.add_all([
        FeedbackEvent(reader_id=reader.id, article_id=a.id, action='liked') for a in articles
    ])
    db_session.add(FeedbackEvent(reader_id=reader.id, article_id=articles[0].id, action='bookmark'))
    db_session.commit()
    return articles


def _suggestion(db_session, reader, category='Urban planning', status='pending'):
    s = InterestSuggestion(reader_id=reader.id, category=category, confidence=0.6, status=status)
    db_session.add(s)
    db_session.commit()
    return s


class TestAffinityAnalysis:
    def test_needs_enough_likes(self, db_session, reader, make_article, fake_gateway):
        article = make_article()
        db_session.add(FeedbackEvent(reader_id=reader.id, article_id=article.id, action='liked'))
        db_session.commit()

        assert AffinityService(fake_gateway).run_affinity_analysis(reader.id) == 0
        fake_gateway.complete.assert_not_called()

    def test_stores_new_suggestions_only(self, db_session, reader, interests, liked, fake_gateway):
        _suggestion(db_session, reader, category='Gossip', status='dismissed')
        fake_gateway.complete.return_value = {'content': SUGGESTED}

        created = AffinityService(fake_gateway).run_affinity_analysis(reader.id)

        assert created == 1
        stored = InterestSuggestion.query.filter_by(status='pending').one()
        assert stored.category == 'Urban planning'
        assert stored.related_interests == ['A']
        assert stored.confidence == 0.8

        prompt = fake_gateway.complete.call_args[0][0]
        assert 'Zoning story number 0' in prompt
        assert '## Previously Dismissed (DO NOT re-suggest)\n- Gossip' in prompt
        assert fake_gateway.complete.call_args.kwargs['purpose'] == 'affinity_analysis'

    def test_skips_while_suggestions_pending(self, db_session, reader, liked, fake_gateway):
        _suggestion(db_session, reader)
        assert AffinityService(fake_gateway).run_affinity_analysis(reader.id) == 0
        fake_gateway.complete.assert_not_called()

    def test_provider_failure_stores_nothing(self, db_session, reader, liked, fake_gateway):
        fake_gateway.complete.side_effect = LLMProviderError('overloaded', status=529)
        assert AffinityService(fake_gateway).run_affinity_analysis(reader.id) == 0
        assert InterestSuggestion.query.count() == 0

    def test_unparseable_response(self, db_session, reader, liked, fake_gateway):
        fake_gateway.complete.return_value = {'content': 'no suggestions today'}
        assert AffinityService(fake_gateway).run_affinity_analysis(reader.id) == 0


class TestResolveSuggestion:
    def test_accept_creates_interest(self, db_session, reader):
        suggestion = _suggestion(db_session, reader)

        interest = AffinityService().accept(suggestion, weight=0.6)

        assert interest.category == 'Urban planning'
        assert interest.weight == 0.6
        assert Interest.query.filter_by(reader_id=reader.id).count() == 1
        assert suggestion.status == 'accepted'
        assert suggestion.resolved_at is not None

    def test_dismiss(self, db_session, reader):
        suggestion = _suggestion(db_session, reader)
        AffinityService().dismiss(suggestion)
        assert suggestion.status == 'dismissed'
        assert AffinityService().pending(reader.id) == []

    def test_resolved_suggestion_cannot_be_accepted(self, db_session, reader):
        suggestion = _suggestion(db_session, reader, status='dismissed')
        with pytest.raises(ValueError):
            AffinityService().accept(suggestion)
        assert Interest.query.count() == 0
