import enum
import logging
import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import bindparam, text
from feedcurator.extensions import db
from feedcurator.models.embedding import REF_TYPES, EmbeddingRecord
from feedcurator.utils.serialization import list_to_vector, vector_to_list

logger = logging.getLogger(__name__)


class VectorBackend(str, enum.Enum):
    PGVECTOR = 'pgvector'
    JSON = 'json'


def cosine_similarity(a, b):
    """dot(a, b) / (|a| * |b|); 0.0 for zero-norm or mismatched vectors."""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0 or not np.isfinite(norm):
        return 0.0
    return float(np.clip(np.dot(a, b) / norm, -1.0, 1.0))


def detect_vector_backend(engine, dimensions):
    """Try to provision a native vector column; fall back to JSON storage."""
    if engine.dialect.name != 'postgresql':
        logger.info(f"Vector backend: json ({engine.dialect.name} has no vector type)")
        return VectorBackend.JSON

    try:
        with engine.begin() as conn:
            conn.execute(text('CREATE EXTENSION IF NOT EXISTS vector'))
            conn.execute(text(
                f'ALTER TABLE embeddings ADD COLUMN IF NOT EXISTS embedding vector({int(dimensions)})'
            ))
    except Exception as e:
        logger.warning(f"pgvector not available, using JSON vector storage: {e}")
        return VectorBackend.JSON

    logger.info("Vector backend: pgvector (native vector column)")
    return VectorBackend.PGVECTOR


def resolve_vector_backend(app):
    """Pinned backend from config, else detect it from the database once."""
    pinned = app.config.get('VECTOR_BACKEND')
    if pinned:
        return VectorBackend(pinned)
    return detect_vector_backend(db.engine, app.config.get('EMBEDDING_DIMENSIONS', 512))


def current_backend():
    from flask import current_app
    return current_app.extensions.get('vector_backend', VectorBackend.JSON)


class VectorStore:
    """Backend-agnostic persistence for article/interest/exclusion vectors."""

    def __init__(self, backend=None, dimensions=512):
        self.backend = VectorBackend(backend) if backend else current_backend()
        self.dimensions = dimensions

    def store(self, kind, ref_id, embedding_text, vector):
        """Upsert the vector for (kind, ref_id). Caller commits."""
        _check_kind(kind)
        vec = np.asarray(vector, dtype=np.float32)
        if vec.shape[0] != self.dimensions:
            raise ValueError(f"Vector has {vec.shape[0]} dims, store expects {self.dimensions}")

        if self.backend == VectorBackend.PGVECTOR:
            stmt = text(
                'INSERT INTO embeddings (ref_type, ref_id, embedding_text, embedding, embedding_dim, created_at) '
                'VALUES (:kind, :ref_id, :embedding_text, :vec, :dim, CURRENT_TIMESTAMP) '
                'ON CONFLICT (ref_type, ref_id) DO UPDATE SET '
                'embedding_text = EXCLUDED.embedding_text, embedding = EXCLUDED.embedding, '
                'embedding_dim = EXCLUDED.embedding_dim, created_at = CURRENT_TIMESTAMP'
            ).bindparams(bindparam('vec', type_=Vector(self.dimensions)))
            db.session.execute(stmt, {
                'kind': kind, 'ref_id': ref_id, 'embedding_text': embedding_text,
                'vec': vec, 'dim': self.dimensions,
            })
            return

        record = EmbeddingRecord.query.filter_by(ref_type=kind, ref_id=ref_id).first()
        if not record:
            record = EmbeddingRecord(ref_type=kind, ref_id=ref_id)
            db.session.add(record)
        record.embedding_text = embedding_text
        record.embedding_json = vector_to_list(vec)
        record.embedding_dim = self.dimensions

    def get(self, kind, ref_id):
        return self.get_many(kind, [ref_id]).get(ref_id)

    def get_many(self, kind, ref_ids):
        """Map ref_id -> vector for the ids that have a stored embedding."""
        _check_kind(kind)
        ref_ids = list(ref_ids)
        if not ref_ids:
            return {}

        if self.backend == VectorBackend.PGVECTOR:
            stmt = text(
                'SELECT ref_id, embedding FROM embeddings '
                'WHERE ref_type = :kind AND ref_id IN :ids AND embedding IS NOT NULL'
            ).bindparams(bindparam('ids', expanding=True)).columns(embedding=Vector(self.dimensions))
            rows = db.session.execute(stmt, {'kind': kind, 'ids': ref_ids}).all()
            return {row[0]: np.asarray(row[1], dtype=np.float32) for row in rows}

        records = EmbeddingRecord.query.filter(
            EmbeddingRecord.ref_type == kind,
            EmbeddingRecord.ref_id.in_(ref_ids),
            EmbeddingRecord.embedding_json.isnot(None),
        ).all()
        result = {}
        for record in records:
            try:
                result[record.ref_id] = list_to_vector(record.embedding_json, self.dimensions)
            except ValueError as e:
                logger.warning(f"Skipping {kind} {record.ref_id} embedding: {e}")
        return result

    def existing_ids(self, kind, ref_ids):
        """Ids among ref_ids that already have a stored embedding row."""
        _check_kind(kind)
        ref_ids = list(ref_ids)
        if not ref_ids:
            return set()
        rows = db.session.query(EmbeddingRecord.ref_id).filter(
            EmbeddingRecord.ref_type == kind,
            EmbeddingRecord.ref_id.in_(ref_ids),
        ).all()
        return {row[0] for row in rows}

    def delete(self, kind, ref_id):
        _check_kind(kind)
        return EmbeddingRecord.query.filter_by(ref_type=kind, ref_id=ref_id).delete(
            synchronize_session=False
        )

    @staticmethod
    def similarity(a, b):
        return cosine_similarity(a, b)


def _check_kind(kind):
    if kind not in REF_TYPES:
        raise ValueError(f"Unknown embedding kind: {kind}")
