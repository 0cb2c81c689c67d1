import threading
import hmac
from functools import wraps
from flask import Blueprint, jsonify, request, current_app
from sqlalchemy.exc import IntegrityError
from feedcurator.extensions import db
from feedcurator.models.ingestion_run import IngestionRun
from feedcurator.models.reader import Reader
from feedcurator.models.source import Source
from feedcurator import feature_flags
from feedcurator.services.settings_service import SettingsService

admin_bp = Blueprint('admin', __name__)
settings_service = SettingsService()
_ingest_thread = None
_ingest_trigger_lock = threading.Lock()


def _extract_admin_token():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.lower().startswith('bearer '):
        return auth_header.split(' ', 1)[1].strip()
    return (request.headers.get('X-Admin-Key') or '').strip()


def require_admin_key(func):
    """Require ADMIN_API_KEY for all admin endpoints."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        configured_key = current_app.config.get('ADMIN_API_KEY')
        if not configured_key:
            return jsonify({'error': 'Admin API is disabled: ADMIN_API_KEY is not configured'}), 503

        presented_key = _extract_admin_token()
        if not presented_key or not hmac.compare_digest(presented_key, configured_key):
            return jsonify({'error': 'Unauthorized'}), 401

        return func(*args, **kwargs)

    return wrapper


@admin_bp.route('/readers')
@require_admin_key
def list_readers():
    readers = Reader.query.order_by(Reader.id).all()
    return jsonify([r.to_dict() for r in readers])


@admin_bp.route('/readers', methods=['POST'])
@require_admin_key
def add_reader():
    data = request.get_json()
    if not data or not data.get('username'):
        return jsonify({'error': 'JSON body with "username" required'}), 400

    reader = Reader(username=data['username'].strip())
    db.session.add(reader)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Reader with this username already exists'}), 409

    return jsonify(reader.to_dict()), 201


@admin_bp.route('/sources/health')
@require_admin_key
def source_health():
    sources = Source.query.order_by(Source.name).all()
    states = {'healthy': 0, 'degraded': 0, 'disabled': 0}
    items = []
    for source in sources:
        payload = source.to_dict()
        payload['subscribers'] = source.subscriptions.filter_by(is_enabled=True).count()
        states[payload['health_state']] += 1
        items.append(payload)
    return jsonify({'summary': states, 'sources': items})


@admin_bp.route('/ingest', methods=['POST'])
@require_admin_key
def trigger_ingest():
    """Manually trigger an ingestion run (optionally for some readers)."""
    from feedcurator.pipeline.orchestrator import run_ingestion

    global _ingest_thread

    data = request.get_json(silent=True) or {}
    reader_ids = data.get('reader_ids')
    if reader_ids is not None and (
        not isinstance(reader_ids, list) or not all(isinstance(r, int) for r in reader_ids)
    ):
        return jsonify({'error': '"reader_ids" must be a list of integers'}), 400

    app = current_app._get_current_object()

    def run_in_thread():
        with app.app_context():
            run_ingestion(trigger='manual', reader_ids=reader_ids)

    with _ingest_trigger_lock:
        if _ingest_thread and _ingest_thread.is_alive():
            return jsonify({'error': 'Ingestion already running'}), 409

        _ingest_thread = threading.Thread(target=run_in_thread, daemon=True)
        _ingest_thread.start()

    return jsonify({'status': 'triggered', 'reader_ids': reader_ids}), 202


@admin_bp.route('/runs')
@require_admin_key
def list_runs():
    limit = min(request.args.get('limit', 20, type=int), 100)
    runs = IngestionRun.query.order_by(IngestionRun.started_at.desc(), IngestionRun.id.desc()).limit(limit).all()
    return jsonify([r.to_dict() for r in runs])


@admin_bp.route('/runs/<int:run_id>')
@require_admin_key
def get_run(run_id):
    run = db.get_or_404(IngestionRun, run_id)
    return jsonify(run.to_dict(include_events=True))


@admin_bp.route('/settings')
@require_admin_key
def get_settings():
    return jsonify(settings_service.get_scoring_settings().to_dict())


@admin_bp.route('/settings', methods=['PUT'])
@require_admin_key
def update_settings():
    data = request.get_json()
    if not isinstance(data, dict) or not data:
        return jsonify({'error': 'JSON object with settings required'}), 400

    try:
        settings = settings_service.update_scoring_settings(data)
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    return jsonify(settings.to_dict())


@admin_bp.route('/flags')
@require_admin_key
def list_flags():
    """List all feature flags."""
    return jsonify(feature_flags.all_flags())


@admin_bp.route('/flags/<key>', methods=['PUT'])
@require_admin_key
def toggle_flag(key):
    """Toggle a feature flag at runtime."""
    data = request.get_json()
    if data is None or 'value' not in data:
        return jsonify({'error': 'JSON body with "value" (bool) required'}), 400

    if not isinstance(data['value'], bool):
        return jsonify({'error': '"value" must be a boolean'}), 400

    feature_flags.set_flag(key, data['value'])
    return jsonify({'flag': key, 'value': feature_flags.is_enabled(key)})
