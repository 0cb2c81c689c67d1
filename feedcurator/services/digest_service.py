import logging
from datetime import datetime, timedelta, timezone
from feedcurator.extensions import db
from feedcurator.models.article import Article
from feedcurator.models.digest import Digest
from feedcurator.models.user_article import UserArticle

logger = logging.getLogger(__name__)

SERENDIPITY_MIN_SCORE = 0.4
MAX_SERENDIPITY = 2
LOOKBACK_DAYS = 7


def select_digest_entries(rows, min_score, max_articles):
    """
    rows: UserArticle rows with a relevance score, highest score first.
    Returns the rows that make the digest, highest score first.
    """
    selected = [r for r in rows if r.relevance_score >= min_score]
    chosen = {r.id for r in selected}

    extras = [
        r for r in rows
        if r.is_serendipity and r.id not in chosen and r.relevance_score >= SERENDIPITY_MIN_SCORE
    ][:MAX_SERENDIPITY]

    combined = sorted(selected + extras, key=lambda r: r.relevance_score, reverse=True)
    return combined[:max_articles]


class DigestService:
    def unassigned_scored(self, reader_id, now=None):
        """Scored rows for this reader not yet in a digest, ingested in the last week."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=LOOKBACK_DAYS)
        return (
            UserArticle.query
            .join(Article, Article.id == UserArticle.article_id)
            .filter(
                UserArticle.reader_id == reader_id,
                UserArticle.digest_id.is_(None),
                UserArticle.relevance_score.isnot(None),
                Article.ingested_at >= cutoff,
            )
            .order_by(UserArticle.relevance_score.desc(), UserArticle.id)
            .all()
        )

    def assemble_digest(self, reader_id, settings, provider='openai', now=None):
        """
        Build a digest from the reader's scored, unassigned articles.
        Returns (digest_id, article_count); (None, 0) when nothing qualifies.
        """
        rows = self.unassigned_scored(reader_id, now=now)
        entries = select_digest_entries(rows, settings.min_relevance_score, settings.max_articles_per_digest)
        if not entries:
            logger.info(f"[Digest] Reader {reader_id}: nothing qualifies ({len(rows)} scored)")
            return None, 0

        digest = Digest(reader_id=reader_id, provider=provider, article_count=len(entries))
        db.session.add(digest)
        db.session.flush()

        # One set-oriented write for membership
        UserArticle.query.filter(
            UserArticle.id.in_([e.id for e in entries])
        ).update({'digest_id': digest.id}, synchronize_session=False)
        db.session.commit()

        serendipity = sum(1 for e in entries if e.is_serendipity)
        logger.info(
            f"[Digest] Reader {reader_id}: digest {digest.id} with {len(entries)} articles "
            f"({serendipity} serendipity)"
        )
        return digest.id, len(entries)

    def latest(self, reader_id):
        return (
            Digest.query
            .filter_by(reader_id=reader_id)
            .order_by(Digest.generated_at.desc(), Digest.id.desc())
            .first()
        )
