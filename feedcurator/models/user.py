from feedcurator.extensions import db
from sqlalchemy import func


class Interest(db.Model):
    __tablename__ = 'interests'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False, index=True)
    category = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text)
    expanded_description = db.Column(db.Text)
    weight = db.Column(db.Float, default=1.0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    reader = db.relationship('Reader', back_populates='interests')

    def to_dict(self):
        return {
            'id': self.id,
            'reader_id': self.reader_id,
            'category': self.category,
            'description': self.description,
            'expanded_description': self.expanded_description,
            'weight': self.weight,
            'is_active': self.is_active,
        }


class Exclusion(db.Model):
    __tablename__ = 'exclusions'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False, index=True)
    category = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text)
    expanded_description = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'reader_id': self.reader_id,
            'category': self.category,
            'description': self.description,
            'expanded_description': self.expanded_description,
        }


class FeedbackEvent(db.Model):
    __tablename__ = 'feedback_events'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False)
    article_id = db.Column(db.Integer, db.ForeignKey('articles.id'), nullable=False)
    action = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    article = db.relationship('Article')

    __table_args__ = (
        db.Index('ix_feedback_reader_created', 'reader_id', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'reader_id': self.reader_id,
            'article_id': self.article_id,
            'action': self.action,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class LearnedPreference(db.Model):
    __tablename__ = 'learned_preferences'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False, index=True)
    preference_text = db.Column(db.Text, nullable=False)
    confidence = db.Column(db.Float, default=0.5)
    derived_from_count = db.Column(db.Integer, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'preference_text': self.preference_text,
            'confidence': self.confidence,
            'derived_from_count': self.derived_from_count,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class InterestSuggestion(db.Model):
    """A latent interest inferred from engagement, pending the reader's decision."""
    __tablename__ = 'interest_suggestions'

    id = db.Column(db.Integer, primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=False, index=True)
    category = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text)
    related_interests = db.Column(db.JSON)
    reasoning = db.Column(db.Text)
    confidence = db.Column(db.Float, default=0.5)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, accepted, dismissed
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())
    resolved_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self):
        return {
            'id': self.id,
            'reader_id': self.reader_id,
            'category': self.category,
            'description': self.description,
            'related_interests': self.related_interests or [],
            'reasoning': self.reasoning,
            'confidence': self.confidence,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
        }
