from feedcurator.extensions import db
from sqlalchemy import func

# Logged for cost reporting; excluded from the generation token budget
EMBEDDING_PURPOSE = 'embedding'


class LLMCallLog(db.Model):
    __tablename__ = 'llm_call_logs'

    id = db.Column(db.Integer, primary_key=True)
    call_purpose = db.Column(db.String(128), nullable=False)
    provider = db.Column(db.String(32), nullable=False)
    model = db.Column(db.String(64), nullable=False)
    prompt_tokens = db.Column(db.Integer, nullable=False, default=0)
    completion_tokens = db.Column(db.Integer, nullable=False, default=0)
    total_tokens = db.Column(db.Integer, nullable=False, default=0)
    cost_usd = db.Column(db.Float, nullable=False, default=0.0)
    latency_ms = db.Column(db.Integer)
    reader_id = db.Column(db.Integer, db.ForeignKey('readers.id'), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        db.Index('ix_llm_logs_purpose_date', 'call_purpose', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'call_purpose': self.call_purpose,
            'provider': self.provider,
            'model': self.model,
            'prompt_tokens': self.prompt_tokens,
            'completion_tokens': self.completion_tokens,
            'total_tokens': self.total_tokens,
            'cost_usd': self.cost_usd,
            'latency_ms': self.latency_ms,
            'reader_id': self.reader_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
