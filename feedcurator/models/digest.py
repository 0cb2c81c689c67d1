from feedcurator.extensions import db
from sqlalchemy import func


class Digest(db.Model):
    __tablename__ = 'digests'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False, index=True)
    provider = db.Column(db.String(32), default='openai')
    article_count = db.Column(db.Integer, default=0)
    generated_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    entries = db.relationship(
        'UserArticle',
        order_by='UserArticle.relevance_score.desc()',
        viewonly=True,
    )

    def to_dict(self, include_articles=False):
        data = {
            'id': self.id,
            'reader_id': self.reader_id,
            'provider': self.provider,
            'article_count': self.article_count,
            'generated_at': self.generated_at.isoformat() if self.generated_at else None,
        }
        if include_articles:
            data['articles'] = [e.to_dict() for e in self.entries if not e.is_archived]
        return data
