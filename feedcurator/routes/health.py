from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from feedcurator.extensions import db

health_bp = Blueprint('health', __name__)


@health_bp.route('/health')
def health():
    return jsonify({'status': 'ok'})


@health_bp.route('/ready')
def ready():
    """DB reachability plus the vector backend this process resolved at startup."""
    try:
        db.session.execute(text('SELECT 1'))
        db_ok = True
    except Exception:
        db.session.rollback()
        db_ok = False

    backend = current_app.extensions.get('vector_backend')
    code = 200 if db_ok else 503
    return jsonify({
        'status': 'ready' if db_ok else 'not_ready',
        'db': db_ok,
        'vector_backend': backend.value if backend else None,
    }), code
