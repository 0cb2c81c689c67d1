from feedcurator.extensions import db
from sqlalchemy import func

DEFAULT_REASON_PREFIX = 'Default score'


class UserArticle(db.Model):
    """Per-reader scoring state for one shared article."""
    __tablename__ = 'user_articles'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False)
    article_id = db.Column(db.Integer, db.ForeignKey('articles.id'), nullable=False)
    embedding_score = db.Column(db.Float, nullable=True)
    best_interest_id = db.Column(db.Integer, db.ForeignKey('interests.id', ondelete='SET NULL'), nullable=True)
    relevance_score = db.Column(db.Float, nullable=True)
    relevance_reason = db.Column(db.String(512))
    summary = db.Column(db.Text)
    is_serendipity = db.Column(db.Boolean, default=False)
    digest_id = db.Column(db.Integer, db.ForeignKey('digests.id'), nullable=True)
    sentiment = db.Column(db.String(16), nullable=True)
    is_read = db.Column(db.Boolean, default=False)
    is_bookmarked = db.Column(db.Boolean, default=False)
    is_archived = db.Column(db.Boolean, default=False)
    scored_at = db.Column(db.DateTime(timezone=True))

    article = db.relationship('Article')

    __table_args__ = (
        db.UniqueConstraint('reader_id', 'article_id', name='uq_user_articles_reader_article'),
        db.Index('ix_user_articles_reader_digest', 'reader_id', 'digest_id'),
    )

    @property
    def is_default_scored(self):
        return bool(self.relevance_reason and self.relevance_reason.startswith(DEFAULT_REASON_PREFIX))

    def to_dict(self):
        article = self.article
        return {
            'article_id': self.article_id,
            'title': article.title if article else None,
            'url': article.url if article else None,
            'embedding_score': self.embedding_score,
            'relevance_score': self.relevance_score,
            'relevance_reason': self.relevance_reason,
            'summary': self.summary,
            'is_serendipity': self.is_serendipity,
            'digest_id': self.digest_id,
            'sentiment': self.sentiment,
            'is_read': self.is_read,
            'is_bookmarked': self.is_bookmarked,
            'is_archived': self.is_archived,
            'scored_at': self.scored_at.isoformat() if self.scored_at else None,
        }
