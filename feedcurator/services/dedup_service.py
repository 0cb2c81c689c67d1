import logging
import numpy as np
from sklearn.metrics.pairwise import cosine_similarity
from feedcurator.extensions import db
from feedcurator.models.article import Article

logger = logging.getLogger(__name__)


class DedupService:
    def __init__(self, threshold=0.85):
        self.threshold = threshold

    def find_duplicates(self, article_ids, embeddings):
        """
        Pairwise near-duplicate detection within one batch.
        embeddings: sequence of vectors aligned with article_ids (batch order).
        Returns: list of (duplicate_id, canonical_id); the later item is the duplicate.
        """
        if len(article_ids) < 2:
            return []

        sim_matrix = cosine_similarity(np.array(embeddings))
        marked = set()
        pairs = []

        for i in range(len(article_ids)):
            if i in marked:
                continue
            for j in range(i + 1, len(article_ids)):
                if j in marked:
                    continue
                if sim_matrix[i, j] >= self.threshold:
                    marked.add(j)
                    pairs.append((article_ids[j], article_ids[i]))

        return pairs

    def mark_duplicates(self, generated):
        """Flag semantic duplicates among freshly generated embeddings.

        generated: {article_id: vector} in batch order. Stored embeddings are
        left in place for both members of a pair.
        """
        article_ids = list(generated.keys())
        pairs = self.find_duplicates(article_ids, [generated[aid] for aid in article_ids])
        if not pairs:
            return []

        for duplicate_id, canonical_id in pairs:
            Article.query.filter_by(id=duplicate_id).update(
                {'is_duplicate': True, 'duplicate_of_id': canonical_id},
                synchronize_session=False,
            )
        db.session.commit()

        logger.info(f"[Dedup] {len(pairs)} semantic duplicates flagged (threshold {self.threshold})")
        return pairs
