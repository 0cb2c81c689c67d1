import logging
from flask import Flask
from config import Config


def create_app(config_class=None):
    app = Flask(__name__)
    app.config.from_object(config_class or Config)

    # Hosted Postgres often exports postgres:// URLs, which SQLAlchemy rejects
    db_uri = app.config.get('SQLALCHEMY_DATABASE_URI', '')
    if db_uri.startswith('postgres://'):
        app.config['SQLALCHEMY_DATABASE_URI'] = db_uri.replace('postgres://', 'postgresql://', 1)

    # Logging
    logging.basicConfig(
        level=getattr(logging, app.config.get('LOG_LEVEL', 'INFO')),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )

    # Extensions
    from feedcurator.extensions import db, migrate, scheduler
    db.init_app(app)
    migrate.init_app(app, db)

    # Feature flags
    from feedcurator import feature_flags
    feature_flags.init_flags()

    # Vector backend is resolved once per process and injected from here on
    from feedcurator.services.vector_store import resolve_vector_backend
    with app.app_context():
        app.extensions['vector_backend'] = resolve_vector_backend(app)

    # Register blueprints
    from feedcurator.routes import register_blueprints
    register_blueprints(app)

    # Scheduler
    if app.config.get('SCHEDULER_ENABLED') and not app.config.get('TESTING'):
        scheduler.init_app(app)
        with app.app_context():
            from feedcurator.jobs.scheduled import register_jobs
            register_jobs(scheduler, app)
        scheduler.start()

    return app
