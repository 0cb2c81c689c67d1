from feedcurator.extensions import db
from sqlalchemy import func


class Article(db.Model):
    __tablename__ = 'articles'

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(db.Integer, db.ForeignKey('sources.id'), nullable=False, index=True)
    external_id = db.Column(db.String(2048), nullable=False)
    provider = db.Column(db.String(32), nullable=False, default='openai')
    title = db.Column(db.String(1024), nullable=False)
    url = db.Column(db.String(2048), nullable=False)
    raw_content = db.Column(db.Text)
    published_at = db.Column(db.DateTime(timezone=True))
    ingested_at = db.Column(db.DateTime(timezone=True), server_default=func.now())
    is_duplicate = db.Column(db.Boolean, default=False)
    duplicate_of_id = db.Column(db.Integer, db.ForeignKey('articles.id'), nullable=True)

    source = db.relationship('Source', back_populates='articles')

    __table_args__ = (
        db.UniqueConstraint('source_id', 'external_id', 'provider', name='uq_articles_source_external_provider'),
        db.Index('ix_articles_ingested', 'ingested_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'source_id': self.source_id,
            'external_id': self.external_id,
            'title': self.title,
            'url': self.url,
            'published_at': self.published_at.isoformat() if self.published_at else None,
            'ingested_at': self.ingested_at.isoformat() if self.ingested_at else None,
            'is_duplicate': self.is_duplicate,
            'duplicate_of_id': self.duplicate_of_id,
        }
