import logging
import random
from datetime import datetime, timezone
from feedcurator.extensions import db
from feedcurator.integrations.llm_gateway import LLMGateway
from feedcurator.models.reader import Reader
from feedcurator.pipeline import acquire
from feedcurator.pipeline.prefilter import prefilter_articles
from feedcurator.pipeline.relevance import empty_result, pending_articles, score_reader
from feedcurator.services.dedup_service import DedupService
from feedcurator.services.embedding_service import EmbeddingProviderError, EmbeddingService
from feedcurator.services.run_logger import RunLogger
from feedcurator.services.settings_service import SettingsService

logger = logging.getLogger(__name__)


def _empty_fetch():
    return {'total_fetched': 0, 'new_articles': 0, 'duplicates': 0, 'errors': [], 'article_ids': []}


def run_ingestion(trigger='cron', reader_ids=None, rng=None, now=None):
    """
    Multi-reader ingestion cycle:
      1. fetch every subscribed source once (concurrently) and store new articles
      2. prefilter each reader's pending articles
      3. embed the union of kept articles once and flag semantic duplicates
      4. per-reader relevance pass and digest
    A failure in one reader zeroes that reader's result and the run continues.
    Returns the run summary dict.
    """
    now = now or datetime.now(timezone.utc)
    rng = rng or random.Random()
    settings = SettingsService().get_scoring_settings()
    run_log = RunLogger(trigger=trigger, provider=settings.llm_provider)

    query = Reader.query.filter_by(is_active=True)
    if reader_ids:
        query = query.filter(Reader.id.in_(reader_ids))
    readers = query.order_by(Reader.id).all()
    run_log.log('start', f"Ingestion for {len(readers)} readers", {'trigger': trigger})

    summary = {'run_id': run_log.run_id, 'readers': {}, 'embeddings_ok': True}
    try:
        # Step 1: Acquire (each subscribed feed once, whatever its subscriber count)
        source_results = {}
        try:
            sources = acquire.subscribed_sources([r.id for r in readers]) if readers else []
            source_results = acquire.ingest_sources(sources, provider=settings.llm_provider, run_log=run_log)
        except Exception as e:
            db.session.rollback()
            run_log.error('fetch', 'Source ingestion failed', {'error': str(e)})

        fetch_results = {}
        for reader in readers:
            try:
                fetch_results[reader.id] = acquire.summarize_for_reader(reader, source_results)
            except Exception as e:
                db.session.rollback()
                run_log.error('fetch', f"Reader {reader.id} fetch summary failed", {'error': str(e)})
                fetch_results[reader.id] = _empty_fetch()

        # Step 2: Prefilter
        kept_by_reader = {}
        to_embed = {}
        for reader in readers:
            try:
                pending = pending_articles(reader, now=now)
                result = prefilter_articles(
                    pending, settings, account_age_days=reader.account_age_days(now), now=now,
                )
            except Exception as e:
                db.session.rollback()
                run_log.error('prefilter', f"Reader {reader.id} prefilter failed", {'error': str(e)})
                continue
            kept_by_reader[reader.id] = result.kept
            for article in result.kept:
                to_embed.setdefault(article.id, article)
            run_log.log('prefilter', f"Reader {reader.id}: {len(result.kept)} kept", {
                'removed': [r._asdict() for r in result.removed[:50]],
                'removed_count': len(result.removed),
            })

        # Step 3: Embed + semantic dedup
        embedding_service = EmbeddingService(dimensions=settings.embedding_dimensions)
        embeddings_ok = True
        try:
            generated = embedding_service.embed_articles(list(to_embed.values()))
            pairs = DedupService(settings.semantic_dedup_threshold).mark_duplicates(generated)
            run_log.log('embed', f"{len(generated)} articles embedded, {len(pairs)} semantic duplicates")
        except EmbeddingProviderError as e:
            db.session.rollback()
            embeddings_ok = False
            run_log.warn('embed', f"Embedding provider failed, generative-only this cycle: {e}")
        summary['embeddings_ok'] = embeddings_ok

        # Step 4: Relevance per reader
        gateway = LLMGateway(provider=settings.llm_provider)
        for reader in readers:
            reader_result = empty_result(reader.id)
            if reader.id in kept_by_reader:
                try:
                    reader_result = score_reader(
                        reader, kept_by_reader[reader.id], settings, gateway, embedding_service,
                        embeddings_ok=embeddings_ok, rng=rng, now=now, run_log=run_log,
                    )
                except Exception as e:
                    db.session.rollback()
                    logger.error(f"[Relevance] Reader {reader.id} failed: {e}", exc_info=True)
                    run_log.error('relevance', f"Reader {reader.id} failed", {'error': str(e)})
                    reader_result = empty_result(reader.id)

            fetched = fetch_results.get(reader.id, _empty_fetch())
            summary['readers'][reader.id] = {
                **reader_result,
                'total_fetched': fetched['total_fetched'],
                'new_articles': fetched['new_articles'],
                'duplicates': fetched['duplicates'],
                'fetch_errors': len(fetched['errors']),
            }
    except Exception as e:
        db.session.rollback()
        logger.error(f"Ingestion run failed: {e}", exc_info=True)
        run_log.error('run', 'Ingestion run failed', {'error': str(e)})
        run_log.persist('error', summary=_json_summary(summary), error=str(e))
        raise

    run_log.log('done', f"Ingestion complete in {run_log.elapsed_ms}ms")
    run_log.persist('success', summary=_json_summary(summary))
    return summary


def _json_summary(summary):
    # JSON object keys must be strings
    return {**summary, 'readers': {str(k): v for k, v in summary['readers'].items()}}
