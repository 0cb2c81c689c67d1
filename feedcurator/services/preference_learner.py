import logging
from feedcurator.extensions import db
from feedcurator.integrations.llm_gateway import (
    BudgetExhaustedError,
    LLMProviderError,
    LLMUnavailableError,
)
from feedcurator.models.user import FeedbackEvent, LearnedPreference
from feedcurator.models.user_article import UserArticle
from feedcurator.services.settings_service import SettingsService
from feedcurator.utils.json_recovery import parse_json_array

logger = logging.getLogger(__name__)

FEEDBACK_WINDOW = 200
MIN_FEEDBACK = 10
RELEARN_INTERVAL = 50
MAX_SAMPLE = 100
LAST_COUNT_KEY = 'last_learning_feedback_count'

STRONG_ACTIONS = {'liked', 'disliked', 'read', 'bookmark'}
WEAK_ACTIONS = {'skipped', 'neutral', 'archived'}


def should_learn(feedback_count, last_count):
    """Pure trigger rule: enough feedback overall and enough since the last run."""
    if feedback_count < MIN_FEEDBACK:
        return False
    return feedback_count - (last_count or 0) >= RELEARN_INTERVAL


def select_feedback_sample(events, limit=MAX_SAMPLE):
    """
    events: FeedbackEvent rows, most recent first.
    Keeps meaningful actions, one per article (most recent wins), strong
    signals ahead of weak ones, capped at ``limit``.
    """
    seen = set()
    strong, weak = [], []
    for event in events:
        if event.action not in STRONG_ACTIONS and event.action not in WEAK_ACTIONS:
            continue
        if event.article_id in seen:
            continue
        seen.add(event.article_id)
        (strong if event.action in STRONG_ACTIONS else weak).append(event)
    return (strong + weak)[:limit]


class PreferenceLearner:
    def __init__(self, gateway, settings_service=None):
        self.gateway = gateway
        self.settings = settings_service or SettingsService()

    def feedback_count(self, reader_id):
        return FeedbackEvent.query.filter_by(reader_id=reader_id).count()

    def last_learning_count(self, reader_id):
        raw = self.settings.get_reader_value(reader_id, LAST_COUNT_KEY)
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            logger.warning(f"Reader {reader_id}: bad {LAST_COUNT_KEY}={raw!r}, treating as 0")
            return 0

    def should_run_learning(self, reader_id):
        return should_learn(self.feedback_count(reader_id), self.last_learning_count(reader_id))

    def run_preference_learning(self, reader_id):
        """Replace the reader's learned preferences from recent feedback.

        Returns True when a new set was stored. Provider failure or an
        unparseable response leaves prior preferences untouched.
        """
        total = self.feedback_count(reader_id)
        if total < MIN_FEEDBACK:
            return False

        events = (
            FeedbackEvent.query
            .filter_by(reader_id=reader_id)
            .order_by(FeedbackEvent.created_at.desc(), FeedbackEvent.id.desc())
            .limit(FEEDBACK_WINDOW)
            .all()
        )
        sample = select_feedback_sample(events)
        if not sample:
            logger.info(f"[Learn] Reader {reader_id}: no meaningful feedback in window")
            return False

        existing = LearnedPreference.query.filter_by(reader_id=reader_id).all()
        prompt = self._build_prompt(reader_id, sample, existing)

        try:
            response = self.gateway.complete(
                prompt, max_tokens=2048, purpose='preference_learning', reader_id=reader_id,
            )
        except (LLMProviderError, LLMUnavailableError, BudgetExhaustedError) as e:
            logger.warning(f"[Learn] Reader {reader_id}: learning call failed: {e}")
            return False

        parsed = parse_json_array(response['content'])
        if not parsed.ok:
            logger.error(f"[Learn] Reader {reader_id}: unparseable response ({parsed.error})")
            return False

        preferences = []
        for item in parsed.value:
            if not isinstance(item, dict):
                continue
            text = item.get('preference_text')
            if not isinstance(text, str) or not text.strip():
                continue
            try:
                confidence = min(max(float(item.get('confidence', 0.5)), 0.0), 1.0)
            except (TypeError, ValueError):
                confidence = 0.5
            try:
                derived = int(item.get('derived_from_count') or 0)
            except (TypeError, ValueError):
                derived = 0
            preferences.append(LearnedPreference(
                reader_id=reader_id,
                preference_text=text.strip(),
                confidence=confidence,
                derived_from_count=derived,
            ))

        try:
            LearnedPreference.query.filter_by(reader_id=reader_id).delete(synchronize_session=False)
            db.session.add_all(preferences)
            self.settings.set_reader_value(reader_id, LAST_COUNT_KEY, total)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"[Learn] Reader {reader_id}: {len(preferences)} preferences from {len(sample)} signals")
        return True

    def _build_prompt(self, reader_id, sample, existing):
        reasons = dict(
            db.session.query(UserArticle.article_id, UserArticle.relevance_reason)
            .filter(
                UserArticle.reader_id == reader_id,
                UserArticle.article_id.in_([e.article_id for e in sample]),
            )
            .all()
        )
        feedback_list = '\n'.join(
            f"Action: {e.action} | Title: {e.article.title if e.article else 'unknown'} | "
            f"Source: {e.article.source.name if e.article and e.article.source else 'unknown'} | "
            f"Category: {reasons.get(e.article_id) or 'unknown'}"
            for e in sample
        )
        existing_list = '\n'.join(
            f"- {p.preference_text} (confidence: {p.confidence})" for p in existing
        ) or 'None yet.'

        return (
            "Analyze this user's content feedback to identify patterns and preferences.\n\n"
            f"## Recent Feedback (last {len(sample)} interactions)\n{feedback_list}\n\n"
            f"## Current Learned Preferences\n{existing_list}\n\n"
            "## Instructions\n"
            "Based on the feedback patterns, generate or update preference statements. Each should be:\n"
            "- A clear, natural language statement about what the user likes/dislikes\n"
            "- Include a confidence score (0.0-1.0) based on how consistent the signal is\n\n"
            "Return ONLY a JSON array (no markdown code fences):\n"
            "[\n"
            "  {\n"
            '    "preference_text": "User strongly prefers technical deep-dives over news summaries",\n'
            '    "confidence": 0.8,\n'
            '    "derived_from_count": 15\n'
            "  }\n"
            "]"
        )
