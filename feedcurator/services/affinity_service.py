import logging
import math
from datetime import datetime, timezone
from feedcurator.extensions import db
from feedcurator.integrations.llm_gateway import (
    BudgetExhaustedError,
    LLMProviderError,
    LLMUnavailableError,
)
from feedcurator.models.user import FeedbackEvent, Interest, InterestSuggestion
from feedcurator.models.user_article import UserArticle
from feedcurator.services.profile_service import ProfileService
from feedcurator.utils.json_recovery import parse_json_array

logger = logging.getLogger(__name__)

FEEDBACK_WINDOW = 100
MIN_LIKED = 5
MAX_LIKED_LISTED = 50
MAX_BOOKMARKED_LISTED = 20
MIN_CONFIDENCE = 0.3


class AffinityService:
    """Suggests interests the reader engages with but has not declared."""

    def __init__(self, gateway=None, profile_service=None):
        self.gateway = gateway
        self.profiles = profile_service or ProfileService()

    def pending(self, reader_id):
        return (
            InterestSuggestion.query
            .filter_by(reader_id=reader_id, status='pending')
            .order_by(InterestSuggestion.confidence.desc(), InterestSuggestion.id)
            .all()
        )

    def run_affinity_analysis(self, reader_id):
        """Store new suggestions from recent likes and bookmarks.

        Returns the number stored. Skipped with too few likes or while earlier
        suggestions are still pending. Provider failure stores nothing.
        """
        events = (
            FeedbackEvent.query
            .filter_by(reader_id=reader_id)
            .order_by(FeedbackEvent.created_at.desc(), FeedbackEvent.id.desc())
            .limit(FEEDBACK_WINDOW)
            .all()
        )
        liked = [e for e in events if e.action == 'liked']
        bookmarked = [e for e in events if e.action == 'bookmark']
        if len(liked) < MIN_LIKED:
            logger.info(f"[Affinity] Reader {reader_id}: {len(liked)} liked articles, need {MIN_LIKED}+")
            return 0

        if self.pending(reader_id):
            logger.info(f"[Affinity] Reader {reader_id}: pending suggestions exist, skipping")
            return 0

        interests = (
            Interest.query
            .filter(Interest.reader_id == reader_id, Interest.is_active.is_(True))
            .order_by(Interest.weight.desc(), Interest.id)
            .all()
        )
        dismissed = [
            row[0] for row in db.session.query(InterestSuggestion.category).filter_by(
                reader_id=reader_id, status='dismissed',
            ).all()
        ]
        prompt = self._build_prompt(reader_id, interests, liked, bookmarked, dismissed)

        try:
            response = self.gateway.complete(
                prompt, max_tokens=2048, purpose='affinity_analysis', reader_id=reader_id,
            )
        except (LLMProviderError, LLMUnavailableError, BudgetExhaustedError) as e:
            logger.warning(f"[Affinity] Reader {reader_id}: analysis call failed: {e}")
            return 0

        parsed = parse_json_array(response['content'])
        if not parsed.ok:
            logger.error(f"[Affinity] Reader {reader_id}: unparseable response ({parsed.error})")
            return 0

        taken = {i.category.lower() for i in interests} | {c.lower() for c in dismissed}
        suggestions = []
        for item in parsed.value:
            suggestion = self._to_suggestion(reader_id, item)
            if suggestion is None or suggestion.category.lower() in taken:
                continue
            taken.add(suggestion.category.lower())
            suggestions.append(suggestion)

        db.session.add_all(suggestions)
        db.session.commit()
        logger.info(f"[Affinity] Reader {reader_id}: {len(suggestions)} interest suggestions")
        return len(suggestions)

    def accept(self, suggestion, weight=1.0):
        """Turn a pending suggestion into an interest (embedded like any new interest)."""
        if suggestion.status != 'pending':
            raise ValueError(f'Suggestion already {suggestion.status}')
        interest = self.profiles.create('interest', suggestion.reader_id, {
            'category': suggestion.category,
            'description': suggestion.description,
            'weight': weight,
        })
        self._resolve(suggestion, 'accepted')
        return interest

    def dismiss(self, suggestion):
        if suggestion.status != 'pending':
            raise ValueError(f'Suggestion already {suggestion.status}')
        self._resolve(suggestion, 'dismissed')

    def _resolve(self, suggestion, status):
        suggestion.status = status
        suggestion.resolved_at = datetime.now(timezone.utc)
        db.session.commit()

    def _to_suggestion(self, reader_id, item):
        if not isinstance(item, dict):
            return None
        category = item.get('category')
        if not isinstance(category, str) or not category.strip():
            return None
        try:
            confidence = float(item.get('confidence', 0.0))
        except (TypeError, ValueError):
            return None
        if not math.isfinite(confidence) or confidence < MIN_CONFIDENCE:
            return None

        related = item.get('related_interests')
        if not isinstance(related, list):
            related = []
        return InterestSuggestion(
            reader_id=reader_id,
            category=category.strip()[:256],
            description=(item.get('description') or None),
            related_interests=[str(r) for r in related],
            reasoning=(item.get('reasoning') or None),
            confidence=min(confidence, 1.0),
        )

    def _build_prompt(self, reader_id, interests, liked, bookmarked, dismissed):
        reasons = dict(
            db.session.query(UserArticle.article_id, UserArticle.relevance_reason)
            .filter(
                UserArticle.reader_id == reader_id,
                UserArticle.article_id.in_([e.article_id for e in liked]),
            )
            .all()
        )

        def _title(event):
            return event.article.title if event.article else 'unknown'

        def _source(event):
            return event.article.source.name if event.article and event.article.source else 'unknown'

        interest_list = '\n'.join(
            f"- {i.category}: {i.description or 'No description'}" for i in interests
        ) or 'None yet.'
        liked_list = '\n'.join(
            f'- "{_title(e)}" ({reasons.get(e.article_id) or "no reason"}) [{_source(e)}]'
            for e in liked[:MAX_LIKED_LISTED]
        )
        bookmarked_list = '\n'.join(
            f'- "{_title(e)}" [{_source(e)}]' for e in bookmarked[:MAX_BOOKMARKED_LISTED]
        ) or 'No bookmarked articles yet.'
        dismissed_note = (
            "\n\n## Previously Dismissed (DO NOT re-suggest)\n" + '\n'.join(f"- {c}" for c in dismissed)
            if dismissed else ''
        )

        return (
            "You are analyzing a user's content engagement to discover latent interests: topics they "
            "consistently engage with but have not added to their interest profile.\n\n"
            f"## User's Current Interests\n{interest_list}\n\n"
            f"## Recently Liked Articles\n{liked_list}\n\n"
            f"## Recently Bookmarked Articles\n{bookmarked_list}"
            f"{dismissed_note}\n\n"
            "## Instructions\n"
            "Identify up to 4 topic areas that are NOT covered by the current interests, appear "
            "repeatedly in the liked or bookmarked articles, and connect logically to an existing "
            "interest. Only suggest topics with clear evidence; return an empty array if there are none.\n\n"
            "Return ONLY a JSON array (no markdown code fences):\n"
            "[\n"
            "  {\n"
            '    "category": "Urban Planning & Zoning",\n'
            '    "description": "City planning, zoning reform, transit-oriented development",\n'
            '    "related_interests": ["Civic Tech"],\n'
            '    "reasoning": "Liked 6 articles about zoning changes this month",\n'
            '    "confidence": 0.78\n'
            "  }\n"
            "]"
        )
