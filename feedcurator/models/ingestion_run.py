from feedcurator.extensions import db
from sqlalchemy import func


class IngestionRun(db.Model):
    __tablename__ = 'ingestion_runs'

    id = db.Column(db.Integer, primary_key=True)
    trigger = db.Column(db.String(16), nullable=False, default='cron')
    provider = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='running')
    started_at = db.Column(db.DateTime(timezone=True), server_default=func.now())
    finished_at = db.Column(db.DateTime(timezone=True))
    duration_ms = db.Column(db.Integer)
    summary_json = db.Column(db.JSON)
    events_json = db.Column(db.JSON)
    error = db.Column(db.Text)

    def to_dict(self, include_events=False):
        data = {
            'id': self.id,
            'trigger': self.trigger,
            'provider': self.provider,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_ms': self.duration_ms,
            'summary': self.summary_json,
            'error': self.error,
        }
        if include_events:
            data['events'] = self.events_json or []
        return data
