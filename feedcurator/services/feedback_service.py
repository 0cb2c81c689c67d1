import logging
from feedcurator.extensions import db
from feedcurator.models.user import FeedbackEvent
from feedcurator.models.user_article import UserArticle

logger = logging.getLogger(__name__)

SENTIMENTS = ('liked', 'neutral', 'disliked')
VALID_ACTIONS = SENTIMENTS + ('read', 'bookmark', 'unbookmark', 'archived', 'skipped', 'click')


class FeedbackService:
    def record_action(self, reader_id, article_id, action):
        """Apply a feedback action to the reader's article state and log the event.

        Sentiments toggle (repeating the current one clears it), ``read``
        toggles, archiving requires a sentiment first. Raises ValueError for
        invalid actions, LookupError when the reader never received the article.
        """
        if action not in VALID_ACTIONS:
            raise ValueError(f"Invalid action: {action}")

        row = UserArticle.query.filter_by(reader_id=reader_id, article_id=article_id).first()
        if not row:
            raise LookupError(f"Article {article_id} not found for reader {reader_id}")

        if action in SENTIMENTS:
            row.sentiment = None if row.sentiment == action else action
        elif action == 'read':
            row.is_read = not row.is_read
        elif action == 'bookmark':
            row.is_bookmarked = True
        elif action == 'unbookmark':
            row.is_bookmarked = False
        elif action == 'archived':
            if not row.sentiment:
                raise ValueError('Sentiment required before archiving')
            row.is_archived = True

        db.session.add(FeedbackEvent(reader_id=reader_id, article_id=article_id, action=action))
        db.session.commit()

        logger.info(f"Feedback: reader {reader_id} {action} article {article_id}")
        return row
