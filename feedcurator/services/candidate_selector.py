import logging
import random
from typing import List, NamedTuple

logger = logging.getLogger(__name__)


class Candidate(NamedTuple):
    article_id: int
    blended: float
    is_serendipity: bool


class Selection(NamedTuple):
    candidates: List[Candidate]
    above_threshold: int
    serendipity: int
    excluded: int
    skipped: int


def select_candidates(scored, settings, rng=None):
    """
    Split embedding-scored articles into the set worth a generative call.

    scored: iterable of EmbeddingScore.
    Above-threshold articles are sorted by blended score desc and capped at
    max_llm_candidates. Articles in [serendipity_min, serendipity_max) are
    sampled uniformly without replacement. Anything matching an exclusion at
    or above embedding_exclusion_threshold is dropped first.
    """
    rng = rng or random.Random()
    above = []
    band = []
    excluded = 0
    total = 0

    for score in scored:
        total += 1
        if score.exclusion_similarity >= settings.embedding_exclusion_threshold:
            excluded += 1
            continue
        if score.blended >= settings.embedding_llm_threshold:
            above.append(score)
        elif settings.embedding_serendipity_min <= score.blended < settings.embedding_serendipity_max:
            band.append(score)

    above.sort(key=lambda s: s.blended, reverse=True)
    above = above[:settings.max_llm_candidates]

    sample_size = min(settings.serendipity_sample_size, len(band))
    sampled = rng.sample(band, sample_size) if sample_size > 0 else []

    candidates = [Candidate(s.article_id, s.blended, False) for s in above]
    candidates += [Candidate(s.article_id, s.blended, True) for s in sampled]

    skipped = total - len(candidates) - excluded
    return Selection(
        candidates=candidates,
        above_threshold=len(above),
        serendipity=len(sampled),
        excluded=excluded,
        skipped=skipped,
    )
