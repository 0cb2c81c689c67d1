from datetime import datetime, timezone
from feedcurator.extensions import db
from sqlalchemy import func


class Reader(db.Model):
    __tablename__ = 'readers'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(128), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    subscriptions = db.relationship('Subscription', back_populates='reader', lazy='dynamic')
    interests = db.relationship('Interest', back_populates='reader', lazy='dynamic')

    def account_age_days(self, now=None):
        """Days since the account was created; 0 when unknown."""
        if not self.created_at:
            return 0.0
        now = now or datetime.now(timezone.utc)
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return max((now - created).total_seconds() / 86400.0, 0.0)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
