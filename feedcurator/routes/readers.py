from flask import Blueprint, abort, jsonify, request
from sqlalchemy.exc import IntegrityError
from feedcurator.extensions import db
from feedcurator.models.digest import Digest
from feedcurator.models.reader import Reader
from feedcurator.models.source import Source, Subscription
from feedcurator.models.user import InterestSuggestion, LearnedPreference
from feedcurator.services.affinity_service import AffinityService
from feedcurator.services.digest_service import DigestService
from feedcurator.services.feedback_service import FeedbackService
from feedcurator.services.profile_service import ProfileService

readers_bp = Blueprint('readers', __name__)
feedback_service = FeedbackService()
profile_service = ProfileService()
digest_service = DigestService()
affinity_service = AffinityService(profile_service=profile_service)

PROFILE_KINDS = {'interests': 'interest', 'exclusions': 'exclusion'}


def _reader_or_404(reader_id):
    reader = db.session.get(Reader, reader_id)
    if reader is None:
        abort(404)
    return reader


def _kind_or_404(collection):
    if collection not in PROFILE_KINDS:
        abort(404)
    return PROFILE_KINDS[collection]


# --- Sources ---

@readers_bp.route('/<int:reader_id>/sources')
def list_sources(reader_id):
    reader = _reader_or_404(reader_id)
    subscriptions = (
        reader.subscriptions
        .join(Source, Source.id == Subscription.source_id)
        .order_by(Source.name)
        .all()
    )
    return jsonify([s.to_dict() for s in subscriptions])


@readers_bp.route('/<int:reader_id>/sources', methods=['POST'])
def add_source(reader_id):
    """Subscribe to a feed; the feed row is shared with other subscribers of the same URL."""
    _reader_or_404(reader_id)
    data = request.get_json()
    if not data:
        return jsonify({'error': 'JSON body required'}), 400

    missing = [f for f in ('name', 'url') if not data.get(f)]
    if missing:
        return jsonify({'error': f'Missing fields: {missing}'}), 400

    url = data['url'].strip()
    source = Source.query.filter_by(url=url).first()
    if source is None:
        source = Source(
            name=data['name'],
            url=url,
            feed_type=data.get('feed_type', 'rss'),
            max_items=data.get('max_items'),
        )
        db.session.add(source)
        db.session.flush()

    subscription = Subscription.query.filter_by(reader_id=reader_id, source_id=source.id).first()
    if subscription is not None:
        if subscription.is_enabled:
            return jsonify({'error': 'Already subscribed to this URL'}), 409
        subscription.is_enabled = True
        db.session.commit()
        return jsonify(subscription.to_dict())

    subscription = Subscription(reader_id=reader_id, source_id=source.id)
    db.session.add(subscription)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Already subscribed to this URL'}), 409

    return jsonify(subscription.to_dict()), 201


@readers_bp.route('/<int:reader_id>/sources/<int:source_id>', methods=['DELETE'])
def disable_source(reader_id, source_id):
    """Opt out of a feed. Stored articles and other readers' subscriptions are untouched."""
    subscription = Subscription.query.filter_by(reader_id=reader_id, source_id=source_id).first_or_404()
    subscription.is_enabled = False
    db.session.commit()
    return jsonify({'status': 'disabled', 'id': source_id})


# --- Interests / exclusions ---

@readers_bp.route('/<int:reader_id>/<collection>')
def list_profiles(reader_id, collection):
    kind = _kind_or_404(collection)
    _reader_or_404(reader_id)
    return jsonify([p.to_dict() for p in profile_service.list(kind, reader_id)])


@readers_bp.route('/<int:reader_id>/<collection>', methods=['POST'])
def create_profile(reader_id, collection):
    kind = _kind_or_404(collection)
    _reader_or_404(reader_id)
    data = request.get_json()
    if not data:
        return jsonify({'error': 'JSON body required'}), 400

    try:
        profile = profile_service.create(kind, reader_id, data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(profile.to_dict()), 201


@readers_bp.route('/<int:reader_id>/<collection>/<int:profile_id>', methods=['PUT'])
def update_profile(reader_id, collection, profile_id):
    kind = _kind_or_404(collection)
    profile = profile_service.get(kind, reader_id, profile_id)
    if profile is None:
        return jsonify({'error': f'{kind.capitalize()} not found'}), 404
    data = request.get_json()
    if not data:
        return jsonify({'error': 'JSON body required'}), 400

    try:
        profile = profile_service.update(kind, profile, data)
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    return jsonify(profile.to_dict())


@readers_bp.route('/<int:reader_id>/<collection>/<int:profile_id>', methods=['DELETE'])
def delete_profile(reader_id, collection, profile_id):
    kind = _kind_or_404(collection)
    profile = profile_service.get(kind, reader_id, profile_id)
    if profile is None:
        return jsonify({'error': f'{kind.capitalize()} not found'}), 404

    profile_service.delete(kind, profile)
    return jsonify({'status': 'deleted', 'id': profile_id})


# --- Feedback ---

@readers_bp.route('/<int:reader_id>/feedback', methods=['POST'])
def submit_feedback(reader_id):
    """Record a feedback action (liked/neutral/disliked/read/bookmark/...)."""
    data = request.get_json()
    if not data:
        return jsonify({'error': 'JSON body required'}), 400

    missing = [f for f in ('article_id', 'action') if f not in data]
    if missing:
        return jsonify({'error': f'Missing fields: {missing}'}), 400

    try:
        row = feedback_service.record_action(reader_id, data['article_id'], data['action'])
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except LookupError as e:
        return jsonify({'error': str(e)}), 404

    return jsonify({'success': True, **row.to_dict()})


# --- Digests ---

@readers_bp.route('/<int:reader_id>/digests')
def list_digests(reader_id):
    _reader_or_404(reader_id)
    limit = min(request.args.get('limit', 20, type=int), 100)
    digests = (
        Digest.query.filter_by(reader_id=reader_id)
        .order_by(Digest.generated_at.desc(), Digest.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify([d.to_dict() for d in digests])


@readers_bp.route('/<int:reader_id>/digests/latest')
def latest_digest(reader_id):
    _reader_or_404(reader_id)
    digest = digest_service.latest(reader_id)
    if not digest:
        return jsonify({'error': 'No digest yet'}), 404
    return jsonify(digest.to_dict(include_articles=True))


@readers_bp.route('/<int:reader_id>/digests/<int:digest_id>')
def get_digest(reader_id, digest_id):
    digest = Digest.query.filter_by(reader_id=reader_id, id=digest_id).first_or_404()
    return jsonify(digest.to_dict(include_articles=True))


# --- Learned preferences ---

@readers_bp.route('/<int:reader_id>/preferences')
def list_preferences(reader_id):
    _reader_or_404(reader_id)
    prefs = (
        LearnedPreference.query.filter_by(reader_id=reader_id)
        .order_by(LearnedPreference.confidence.desc())
        .all()
    )
    return jsonify([p.to_dict() for p in prefs])


@readers_bp.route('/<int:reader_id>/preferences/<int:pref_id>', methods=['DELETE'])
def delete_preference(reader_id, pref_id):
    pref = LearnedPreference.query.filter_by(reader_id=reader_id, id=pref_id).first_or_404()
    db.session.delete(pref)
    db.session.commit()
    return jsonify({'status': 'deleted', 'id': pref_id})


# --- Interest suggestions ---

@readers_bp.route('/<int:reader_id>/suggestions')
def list_suggestions(reader_id):
    _reader_or_404(reader_id)
    return jsonify([s.to_dict() for s in affinity_service.pending(reader_id)])


@readers_bp.route('/<int:reader_id>/suggestions/<int:suggestion_id>/<decision>', methods=['POST'])
def resolve_suggestion(reader_id, suggestion_id, decision):
    if decision not in ('accept', 'dismiss'):
        abort(404)
    suggestion = InterestSuggestion.query.filter_by(reader_id=reader_id, id=suggestion_id).first_or_404()
    if suggestion.status != 'pending':
        return jsonify({'error': f'Suggestion already {suggestion.status}'}), 409

    if decision == 'dismiss':
        affinity_service.dismiss(suggestion)
        return jsonify(suggestion.to_dict())

    data = request.get_json(silent=True) or {}
    try:
        interest = affinity_service.accept(suggestion, weight=data.get('weight', 1.0))
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    return jsonify({'suggestion': suggestion.to_dict(), 'interest': interest.to_dict()}), 201
