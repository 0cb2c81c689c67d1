import logging
from typing import NamedTuple, Optional
from feedcurator.services.vector_store import cosine_similarity

logger = logging.getLogger(__name__)

SECONDARY_TOP_K = 3


class EmbeddingScore(NamedTuple):
    article_id: int
    primary: float
    secondary: float
    blended: float
    best_interest_id: Optional[int]
    exclusion_similarity: float


def compute_blended_score(article_vec, interests, primary_weight=0.7, secondary_weight=0.3):
    """
    interests: list of (interest_id, weight, vector), ordered by weight desc then id.
    Returns: (primary, secondary, blended, best_interest_id).

    Interests with weight <= 0 are ignored. Ties on the max go to the earliest
    interest in input order.
    """
    weighted = []
    best_id = None
    best = None
    for interest_id, weight, vec in interests:
        if weight is None or weight <= 0:
            continue
        score = cosine_similarity(article_vec, vec) * weight
        weighted.append(score)
        if best is None or score > best:
            best = score
            best_id = interest_id

    if not weighted:
        return 0.0, 0.0, 0.0, None

    primary = best
    top = sorted(weighted, reverse=True)[:SECONDARY_TOP_K]
    secondary = sum(top) / len(top)
    blended = primary_weight * primary + secondary_weight * secondary
    return primary, secondary, blended, best_id


def max_exclusion_similarity(article_vec, exclusion_vecs):
    if not exclusion_vecs:
        return 0.0
    return max(cosine_similarity(article_vec, vec) for vec in exclusion_vecs)


def score_articles(article_vectors, interests, exclusion_vecs, settings):
    """Score every article vector against one reader's profile.

    article_vectors: {article_id: vector}. Returns list of EmbeddingScore in
    the same order.
    """
    results = []
    for article_id, vec in article_vectors.items():
        primary, secondary, blended, best_id = compute_blended_score(
            vec, interests,
            primary_weight=settings.blended_primary_weight,
            secondary_weight=settings.blended_secondary_weight,
        )
        results.append(EmbeddingScore(
            article_id=article_id,
            primary=primary,
            secondary=secondary,
            blended=blended,
            best_interest_id=best_id,
            exclusion_similarity=max_exclusion_similarity(vec, exclusion_vecs),
        ))
    return results
