from feedcurator.extensions import db
from sqlalchemy import func


class Source(db.Model):
    """A feed URL, fetched once per cycle and shared by every subscriber."""
    __tablename__ = 'sources'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(256), nullable=False)
    url = db.Column(db.String(2048), nullable=False, unique=True)
    feed_type = db.Column(db.String(32), default='rss')
    is_enabled = db.Column(db.Boolean, default=True)
    max_items = db.Column(db.Integer, nullable=True)
    last_fetched_at = db.Column(db.DateTime(timezone=True))
    last_success_at = db.Column(db.DateTime(timezone=True))
    last_failure_at = db.Column(db.DateTime(timezone=True))
    consecutive_failures = db.Column(db.Integer, default=0)
    total_failures = db.Column(db.Integer, default=0)
    last_error = db.Column(db.String(512))
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    subscriptions = db.relationship('Subscription', back_populates='source', lazy='dynamic')
    articles = db.relationship('Article', back_populates='source', lazy='dynamic')

    def health_state(self):
        if not self.is_enabled:
            return 'disabled'
        if (self.consecutive_failures or 0) >= 2:
            return 'degraded'
        return 'healthy'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'feed_type': self.feed_type,
            'is_enabled': self.is_enabled,
            'max_items': self.max_items,
            'last_fetched_at': self.last_fetched_at.isoformat() if self.last_fetched_at else None,
            'last_success_at': self.last_success_at.isoformat() if self.last_success_at else None,
            'last_failure_at': self.last_failure_at.isoformat() if self.last_failure_at else None,
            'consecutive_failures': self.consecutive_failures or 0,
            'total_failures': self.total_failures or 0,
            'last_error': self.last_error,
            'health_state': self.health_state(),
        }


class Subscription(db.Model):
    """A reader's opt-in to a shared source; disabling it is the reader's opt-out."""
    __tablename__ = 'subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False, index=True)
    source_id = db.Column(db.Integer, db.ForeignKey('sources.id'), nullable=False, index=True)
    is_enabled = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    reader = db.relationship('Reader', back_populates='subscriptions')
    source = db.relationship('Source', back_populates='subscriptions')

    __table_args__ = (
        db.UniqueConstraint('reader_id', 'source_id', name='uq_subscriptions_reader_source'),
    )

    def to_dict(self):
        return {
            **self.source.to_dict(),
            'subscription_id': self.id,
            'reader_id': self.reader_id,
            'subscribed': self.is_enabled,
        }
