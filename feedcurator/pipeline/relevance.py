"""Single-reader relevance pass: embedding score, candidate selection,
generative judgment, preference learning, digest assembly."""
import logging
from datetime import datetime, timedelta, timezone
from sqlalchemy import or_
from feedcurator import feature_flags
from feedcurator.extensions import db
from feedcurator.models.article import Article
from feedcurator.models.source import Subscription
from feedcurator.models.user import Exclusion, Interest, LearnedPreference
from feedcurator.models.user_article import DEFAULT_REASON_PREFIX, UserArticle
from feedcurator.services.candidate_selector import select_candidates
from feedcurator.services.digest_service import LOOKBACK_DAYS, DigestService
from feedcurator.services.embedding_scorer import score_articles
from feedcurator.services.embedding_service import EmbeddingProviderError
from feedcurator.services.preference_learner import PreferenceLearner
from feedcurator.services.relevance_scorer import RelevanceScorer

logger = logging.getLogger(__name__)


def empty_result(reader_id):
    return {
        'reader_id': reader_id,
        'mode': None,
        'pending': 0,
        'embedding_scored': 0,
        'llm_candidates': 0,
        'serendipity_sampled': 0,
        'excluded': 0,
        'skipped': 0,
        'llm_scored': 0,
        'learned': False,
        'digest_id': None,
        'digest_articles': 0,
    }


def pending_articles(reader, now=None):
    """Articles from the reader's subscribed sources that still need judging.

    Covers never-scored articles and rows holding a neutral default score,
    ingested within the digest lookback window and not yet in a digest.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=LOOKBACK_DAYS)
    return (
        Article.query
        .join(Subscription, Subscription.source_id == Article.source_id)
        .outerjoin(UserArticle, (UserArticle.article_id == Article.id) & (UserArticle.reader_id == reader.id))
        .filter(
            Subscription.reader_id == reader.id,
            Subscription.is_enabled.is_(True),
            Article.ingested_at >= cutoff,
            UserArticle.digest_id.is_(None),
            or_(
                UserArticle.id.is_(None),
                UserArticle.relevance_score.is_(None),
                UserArticle.relevance_reason.like(f'{DEFAULT_REASON_PREFIX}%'),
            ),
        )
        .order_by(Article.id)
        .all()
    )


def drop_covered_duplicates(reader_id, articles):
    """Drop semantic duplicates whose canonical copy this reader also gets.

    Duplicates are flagged across the whole cycle, so the canonical article may
    come from a feed this reader does not subscribe to. Such a duplicate is the
    reader's only copy and stays. The canonical counts as covered when it is in
    this batch or the reader already has a row for it.
    """
    own_ids = {a.id for a in articles}
    canonical_ids = {a.duplicate_of_id for a in articles if a.is_duplicate and a.duplicate_of_id}
    covered = own_ids & canonical_ids
    elsewhere = canonical_ids - own_ids
    if elsewhere:
        covered |= {
            row[0] for row in db.session.query(UserArticle.article_id).filter(
                UserArticle.reader_id == reader_id,
                UserArticle.article_id.in_(elsewhere),
            ).all()
        }
    return [a for a in articles if not (a.is_duplicate and a.duplicate_of_id in covered)]


def _user_article_rows(reader_id, article_ids):
    """Fetch-or-create the reader's rows for these articles (no commit)."""
    rows = {
        r.article_id: r for r in UserArticle.query.filter(
            UserArticle.reader_id == reader_id,
            UserArticle.article_id.in_(article_ids),
        ).all()
    } if article_ids else {}
    for article_id in article_ids:
        if article_id not in rows:
            row = UserArticle(reader_id=reader_id, article_id=article_id)
            db.session.add(row)
            rows[article_id] = row
    return rows


def score_reader(reader, articles, settings, gateway, embedding_service,
                 embeddings_ok=True, rng=None, now=None, run_log=None):
    """
    Score prefiltered articles for one reader and assemble the digest.

    articles: this reader's prefiltered Article rows.
    embeddings_ok: False when the cycle's embedding stage failed; the reader
    then runs generative-only (every article goes to the LLM).
    """
    result = empty_result(reader.id)
    now = now or datetime.now(timezone.utc)

    if not feature_flags.score_semantic_duplicates():
        articles = drop_covered_duplicates(reader.id, articles)
    result['pending'] = len(articles)

    interests = (
        Interest.query
        .filter(Interest.reader_id == reader.id, Interest.is_active.is_(True))
        .order_by(Interest.weight.desc(), Interest.id)
        .all()
    )
    exclusions = Exclusion.query.filter_by(reader_id=reader.id).order_by(Exclusion.id).all()
    preferences = (
        LearnedPreference.query
        .filter_by(reader_id=reader.id)
        .order_by(LearnedPreference.confidence.desc())
        .all()
    )

    article_map = {a.id: a for a in articles}
    candidates = []
    mode = 'embedding' if embeddings_ok else 'generative_only'

    if articles and mode == 'embedding':
        try:
            embedding_service.ensure_profile_embeddings(reader)
            embedding_service.embed_articles(articles)
        except EmbeddingProviderError as e:
            db.session.rollback()
            _warn(run_log, reader, f"Embeddings unavailable, generative-only: {e}")
            mode = 'generative_only'

    if articles and mode == 'embedding':
        store = embedding_service.store
        interest_vecs = store.get_many('interest', [i.id for i in interests])
        profile = [(i.id, i.weight, interest_vecs[i.id]) for i in interests if i.id in interest_vecs]
        if not profile:
            _warn(run_log, reader, "No interest embeddings, generative-only")
            mode = 'generative_only'

    if articles and mode == 'embedding':
        exclusion_vecs = list(store.get_many('exclusion', [e.id for e in exclusions]).values())
        article_vecs = store.get_many('article', list(article_map))
        scored = score_articles(article_vecs, profile, exclusion_vecs, settings)

        rows = _user_article_rows(reader.id, [s.article_id for s in scored])
        for s in scored:
            rows[s.article_id].embedding_score = s.blended
            rows[s.article_id].best_interest_id = s.best_interest_id
        db.session.commit()

        selection = select_candidates(scored, settings, rng=rng)
        candidates = [(article_map[c.article_id], c.is_serendipity) for c in selection.candidates]
        result.update(
            embedding_scored=len(scored),
            serendipity_sampled=selection.serendipity,
            excluded=selection.excluded,
            skipped=selection.skipped,
        )
        _log(run_log, reader, (
            f"Embedding stage: {len(scored)} scored, {selection.above_threshold} above threshold, "
            f"{selection.serendipity} serendipity, {selection.excluded} excluded, {selection.skipped} skipped"
        ))
    elif articles:
        candidates = [(a, False) for a in articles]

    result['mode'] = mode
    result['llm_candidates'] = len(candidates)

    if candidates:
        scorer = RelevanceScorer(gateway, batch_size=settings.llm_batch_size)
        judged = scorer.score(candidates, interests, exclusions, preferences, reader_id=reader.id)
        rows = _user_article_rows(reader.id, [j['article_id'] for j in judged])
        for j in judged:
            row = rows[j['article_id']]
            row.relevance_score = j['relevance_score']
            row.relevance_reason = j['relevance_reason']
            row.summary = j['summary']
            row.is_serendipity = j['is_serendipity']
            row.scored_at = now
        db.session.commit()
        result['llm_scored'] = len(judged)

    learner = PreferenceLearner(gateway)
    if learner.should_run_learning(reader.id):
        result['learned'] = learner.run_preference_learning(reader.id)

    digest_id, count = DigestService().assemble_digest(reader.id, settings, provider=gateway.provider, now=now)
    result['digest_id'] = digest_id
    result['digest_articles'] = count

    _log(run_log, reader, f"Relevance complete: {result['llm_scored']} judged, digest {digest_id} ({count})")
    return result


def _log(run_log, reader, message):
    if run_log:
        run_log.log('relevance', f"Reader {reader.id}: {message}")
    else:
        logger.info(f"[Relevance] Reader {reader.id}: {message}")


def _warn(run_log, reader, message):
    if run_log:
        run_log.warn('relevance', f"Reader {reader.id}: {message}")
    else:
        logger.warning(f"[Relevance] Reader {reader.id}: {message}")
