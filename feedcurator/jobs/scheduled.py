import logging
from feedcurator.extensions import db

logger = logging.getLogger(__name__)


def _ingestion_job(app):
    with app.app_context():
        logger.info("[Job] Starting scheduled ingestion")
        from feedcurator.pipeline.orchestrator import run_ingestion
        summary = run_ingestion(trigger='cron')
        logger.info(f"[Job] Ingestion complete: {len(summary['readers'])} readers")


def _affinity_job(app):
    with app.app_context():
        logger.info("[Job] Starting affinity analysis")
        created = run_affinity_for_readers()
        logger.info(f"[Job] Affinity analysis complete: {created} suggestions")


def run_affinity_for_readers():
    """Interest suggestions for every active reader; one reader's failure is logged and skipped."""
    from feedcurator.integrations.llm_gateway import LLMGateway
    from feedcurator.models.reader import Reader
    from feedcurator.services.affinity_service import AffinityService
    from feedcurator.services.settings_service import SettingsService

    settings = SettingsService().get_scoring_settings()
    service = AffinityService(LLMGateway(provider=settings.llm_provider))
    created = 0
    for reader in Reader.query.filter_by(is_active=True).order_by(Reader.id).all():
        try:
            created += service.run_affinity_analysis(reader.id)
        except Exception as e:
            db.session.rollback()
            logger.error(f"[Job] Affinity analysis failed for reader {reader.id}: {e}", exc_info=True)
    return created


def refresh_profile_embedding(app, kind, profile_id):
    """Expand (if needed) and embed one interest or exclusion.

    Idempotent: a deleted profile is a no-op, a re-run overwrites the stored
    vector. A failure leaves the profile without a vector and the pre-scoring
    sweep retries it next cycle.
    """
    with app.app_context():
        from feedcurator.integrations.llm_gateway import LLMGateway
        from feedcurator.services.embedding_service import EmbeddingProviderError, EmbeddingService
        from feedcurator.services.profile_service import PROFILE_MODELS
        from feedcurator.services.settings_service import SettingsService

        profile = db.session.get(PROFILE_MODELS[kind], profile_id)
        if profile is None:
            logger.info(f"[Job] {kind} {profile_id} no longer exists, skipping refresh")
            return False

        settings = SettingsService().get_scoring_settings()
        if not profile.expanded_description:
            gateway = LLMGateway(provider=settings.llm_provider)
            if gateway.available:
                expanded = gateway.expand_description(
                    profile.category, profile.description, reader_id=profile.reader_id,
                )
                if expanded:
                    profile.expanded_description = expanded
                    db.session.commit()

        try:
            EmbeddingService(dimensions=settings.embedding_dimensions).embed_profile(
                kind, profile, reader_id=profile.reader_id,
            )
        except EmbeddingProviderError as e:
            db.session.rollback()
            logger.warning(f"[Job] Embedding refresh failed for {kind} {profile_id}: {e}")
            return False

        logger.info(f"[Job] Refreshed embedding for {kind} {profile_id}")
        return True


def _upsert_job(scheduler, **kwargs):
    scheduler.add_job(replace_existing=True, **kwargs)


def register_jobs(scheduler, app):
    """Register all scheduled jobs."""
    hours = app.config.get('INGEST_CRON_HOURS', '7,17')
    _upsert_job(
        scheduler,
        id='ingestion',
        func=_ingestion_job,
        trigger='cron',
        args=[app],
        hour=hours,
        misfire_grace_time=3600,
        coalesce=True,
        max_instances=1,
    )
    logger.info(f"Ingestion scheduled at hours {hours}")

    day = app.config.get('AFFINITY_CRON_DAY', 'sun')
    _upsert_job(
        scheduler,
        id='affinity_analysis',
        func=_affinity_job,
        trigger='cron',
        args=[app],
        day_of_week=day,
        hour=app.config.get('AFFINITY_CRON_HOUR', 9),
        misfire_grace_time=3600,
        coalesce=True,
        max_instances=1,
    )
    logger.info(f"Affinity analysis scheduled weekly on {day}")
