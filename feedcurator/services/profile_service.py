import logging
from flask import current_app
from feedcurator.extensions import db, scheduler
from feedcurator.models.user import Exclusion, Interest
from feedcurator.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

PROFILE_MODELS = {'interest': Interest, 'exclusion': Exclusion}
# Fields whose change makes the stored embedding stale; weight is applied at scoring time
EMBEDDED_FIELDS = ('category', 'description')


class ProfileService:
    """CRUD for interests and exclusions with embedding invalidation."""

    def __init__(self, store=None):
        self.store = store

    def _store(self):
        if self.store is None:
            self.store = VectorStore(dimensions=current_app.config.get('EMBEDDING_DIMENSIONS', 512))
        return self.store

    def list(self, kind, reader_id):
        model = PROFILE_MODELS[kind]
        query = model.query.filter_by(reader_id=reader_id)
        if model is Interest:
            query = query.order_by(Interest.weight.desc(), Interest.id)
        else:
            query = query.order_by(Exclusion.id)
        return query.all()

    def get(self, kind, reader_id, profile_id):
        return PROFILE_MODELS[kind].query.filter_by(reader_id=reader_id, id=profile_id).first()

    def create(self, kind, reader_id, data):
        category = (data.get('category') or '').strip()
        if not category:
            raise ValueError('"category" is required')

        profile = PROFILE_MODELS[kind](
            reader_id=reader_id,
            category=category,
            description=(data.get('description') or '').strip() or None,
        )
        if kind == 'interest':
            profile.weight = _parse_weight(data.get('weight', 1.0))
        db.session.add(profile)
        db.session.commit()

        enqueue_profile_refresh(kind, profile.id)
        return profile

    def update(self, kind, profile, data):
        stale = False
        for field in EMBEDDED_FIELDS:
            if field not in data:
                continue
            value = (data[field] or '').strip() or None
            if field == 'category' and not value:
                raise ValueError('"category" cannot be empty')
            if value != getattr(profile, field):
                setattr(profile, field, value)
                stale = True

        if kind == 'interest':
            if 'weight' in data:
                profile.weight = _parse_weight(data['weight'])
            if 'is_active' in data:
                if not isinstance(data['is_active'], bool):
                    raise ValueError('"is_active" must be a boolean')
                profile.is_active = data['is_active']

        if stale:
            profile.expanded_description = None
            self._store().delete(kind, profile.id)
        db.session.commit()

        if stale:
            logger.info(f"{kind.capitalize()} {profile.id} changed; embedding invalidated")
            enqueue_profile_refresh(kind, profile.id)
        return profile

    def delete(self, kind, profile):
        profile_id = profile.id
        self._store().delete(kind, profile_id)
        db.session.delete(profile)
        db.session.commit()
        logger.info(f"{kind.capitalize()} {profile_id} deleted with its embedding")


def _parse_weight(raw):
    try:
        weight = float(raw)
    except (TypeError, ValueError):
        raise ValueError('"weight" must be a number')
    if weight < 0 or weight > 10:
        raise ValueError('"weight" must be between 0 and 10')
    return weight


def enqueue_profile_refresh(kind, profile_id):
    """Schedule a one-off refresh job. Without a running scheduler the
    pre-scoring sweep embeds the profile on the next cycle instead."""
    if not scheduler.running:
        return False

    from feedcurator.jobs.scheduled import refresh_profile_embedding
    try:
        scheduler.add_job(
            id=f'refresh_{kind}_{profile_id}',
            func=refresh_profile_embedding,
            trigger='date',
            args=[current_app._get_current_object(), kind, profile_id],
            replace_existing=True,
            misfire_grace_time=3600,
        )
    except Exception as e:
        logger.warning(f"Could not enqueue embedding refresh for {kind} {profile_id}: {e}")
        return False
    return True
