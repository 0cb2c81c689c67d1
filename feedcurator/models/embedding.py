from feedcurator.extensions import db
from sqlalchemy import func

REF_TYPES = ('article', 'interest', 'exclusion')


class EmbeddingRecord(db.Model):
    """One stored vector per (ref_type, ref_id).

    ``embedding_json`` holds the vector on the JSON backend. On the pgvector
    backend the vector lives in a native ``embedding vector(n)`` column that is
    provisioned at startup and accessed with raw SQL, so it is not mapped here.
    """
    __tablename__ = 'embeddings'

    id = db.Column(db.Integer, primary_key=True)
    ref_type = db.Column(db.String(16), nullable=False)
    ref_id = db.Column(db.Integer, nullable=False)
    embedding_text = db.Column(db.Text, nullable=False)
    embedding_json = db.Column(db.JSON, nullable=True)
    embedding_dim = db.Column(db.Integer, default=512)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        db.UniqueConstraint('ref_type', 'ref_id', name='uq_embeddings_ref'),
    )
