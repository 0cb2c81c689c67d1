import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from time import perf_counter
from flask import current_app
from sqlalchemy.exc import IntegrityError
from feedcurator.extensions import db
from feedcurator.integrations.rss import fetch_feed
from feedcurator.models.article import Article
from feedcurator.models.reader import Reader
from feedcurator.models.source import Source, Subscription

logger = logging.getLogger(__name__)


def _fetch_one(source_id, url, max_items, timeout):
    """Worker: network and parsing only, no database access."""
    t0 = perf_counter()
    try:
        entries = fetch_feed(source_id, url, max_items=max_items, timeout=timeout)
        return source_id, entries, None, (perf_counter() - t0) * 1000.0
    except Exception as e:
        return source_id, [], str(e), (perf_counter() - t0) * 1000.0


def fetch_sources(sources, max_items=None, timeout=10, workers=8):
    """
    Fetch all sources concurrently.
    Returns: {source_id: (entries, error, latency_ms)}; one failing feed does
    not affect the others.
    """
    if not sources:
        return {}

    results = {}
    with ThreadPoolExecutor(max_workers=max(min(workers, len(sources)), 1)) as executor:
        futures = {
            executor.submit(_fetch_one, s.id, s.url, s.max_items or max_items, timeout): s.id
            for s in sources
        }
        for future in as_completed(futures):
            source_id, entries, error, latency_ms = future.result()
            results[source_id] = (entries, error, latency_ms)
    return results


def subscribed_sources(reader_ids=None):
    """Enabled sources with at least one enabled subscription from an active reader."""
    query = (
        Source.query
        .join(Subscription, Subscription.source_id == Source.id)
        .join(Reader, Reader.id == Subscription.reader_id)
        .filter(
            Source.is_enabled.is_(True),
            Subscription.is_enabled.is_(True),
            Reader.is_active.is_(True),
        )
    )
    if reader_ids:
        query = query.filter(Reader.id.in_(reader_ids))
    return query.distinct().order_by(Source.id).all()


def reader_source_ids(reader):
    return {
        row[0] for row in db.session.query(Subscription.source_id).filter(
            Subscription.reader_id == reader.id,
            Subscription.is_enabled.is_(True),
        ).all()
    }


def ingest_sources(sources, provider='openai', run_log=None):
    """
    Fetch each source once and store new articles.
    Returns {source_id: {fetched, new_articles, duplicates, error, article_ids}}.
    """
    config = current_app.config
    if run_log:
        run_log.log('fetch', f"Fetching {len(sources)} sources")

    started_at = datetime.now(timezone.utc)
    fetched = fetch_sources(
        sources,
        max_items=config.get('FEED_MAX_ITEMS', 50),
        timeout=config.get('FEED_FETCH_TIMEOUT_SECONDS', 10),
        workers=config.get('FEED_FETCH_WORKERS', 8),
    )

    # DB writes are sequential, in source order
    results = {}
    for source in sources:
        entries, error, latency_ms = fetched.get(source.id, ([], 'not fetched', 0.0))
        if error:
            results[source.id] = _source_result(error=f"Source {source.name} ({source.url}): {error}")
            if run_log:
                run_log.error('fetch', 'Source error', {'source_id': source.id, 'error': error})
            else:
                logger.error(f"[Acquire] {results[source.id]['error']}")
            _mark_source_fetch_failure(source, error, started_at)
            continue

        added, dupes, ids = _store_entries(source, entries, provider)
        results[source.id] = _source_result(len(entries), added, dupes, ids)

        _mark_source_fetch_success(source, started_at)
        db.session.commit()
        if run_log:
            run_log.log('fetch', f"Source complete: {source.name}", {
                'fetched': len(entries), 'new': added, 'duplicates': dupes,
                'latency_ms': round(latency_ms),
            })

    new_total = sum(r['new_articles'] for r in results.values())
    failed = sum(1 for r in results.values() if r['error'])
    logger.info(f"[Acquire] {len(sources)} sources: {new_total} new articles, {failed} source errors")
    return results


def summarize_for_reader(reader, source_results):
    """Roll per-source fetch results up over the sources this reader subscribes to."""
    summary = {
        'total_fetched': 0,
        'new_articles': 0,
        'duplicates': 0,
        'errors': [],
        'article_ids': [],
    }
    for source_id in sorted(reader_source_ids(reader)):
        r = source_results.get(source_id)
        if r is None:
            continue
        summary['total_fetched'] += r['fetched']
        summary['new_articles'] += r['new_articles']
        summary['duplicates'] += r['duplicates']
        summary['article_ids'].extend(r['article_ids'])
        if r['error']:
            summary['errors'].append(r['error'])
    return summary


def _source_result(fetched=0, new_articles=0, duplicates=0, article_ids=None, error=None):
    return {
        'fetched': fetched,
        'new_articles': new_articles,
        'duplicates': duplicates,
        'article_ids': article_ids or [],
        'error': error,
    }


def _store_entries(source, entries, provider):
    existing = {
        row[0] for row in db.session.query(Article.external_id).filter(
            Article.source_id == source.id,
            Article.provider == provider,
        ).all()
    }

    added = 0
    duplicates = 0
    ids = []
    for entry in entries:
        external_id = entry.get('external_id') or entry['url']
        if external_id in existing:
            duplicates += 1
            continue

        article = Article(
            source_id=source.id,
            external_id=external_id,
            provider=provider,
            title=entry.get('title', ''),
            url=entry['url'],
            raw_content=entry.get('content'),
            published_at=entry.get('published_at'),
        )
        db.session.add(article)
        try:
            db.session.commit()
        except IntegrityError:
            # Unique constraint is the safety net for concurrent/racing inserts
            db.session.rollback()
            duplicates += 1
            continue

        existing.add(external_id)
        ids.append(article.id)
        added += 1

    return added, duplicates, ids


def _mark_source_fetch_success(source, started_at):
    source.last_fetched_at = started_at
    source.last_success_at = started_at
    source.consecutive_failures = 0
    source.last_error = None


def _mark_source_fetch_failure(source, error, started_at):
    source.last_fetched_at = started_at
    source.last_failure_at = started_at
    source.consecutive_failures = (source.consecutive_failures or 0) + 1
    source.total_failures = (source.total_failures or 0) + 1
    source.last_error = (error or 'unknown error')[:512]

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
