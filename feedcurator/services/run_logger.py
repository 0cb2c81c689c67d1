import logging
import time
from datetime import datetime, timezone
from feedcurator.extensions import db
from feedcurator.models.ingestion_run import IngestionRun

logger = logging.getLogger(__name__)

MAX_EVENTS = 1000
_LEVELS = {'info': logging.INFO, 'warn': logging.WARNING, 'error': logging.ERROR}


class RunLogger:
    """Structured event sink for one ingestion run.

    Every event is mirrored to the module logger immediately and kept in
    memory; ``persist`` writes the run record at the end. Persistence problems
    are logged and swallowed so they never fail the run.
    """

    def __init__(self, trigger='cron', provider='openai'):
        self.trigger = trigger
        self.provider = provider
        self.events = []
        self.run_id = None
        self._start = time.monotonic()

        try:
            run = IngestionRun(trigger=trigger, provider=provider, status='running')
            db.session.add(run)
            db.session.commit()
            self.run_id = run.id
        except Exception as e:
            db.session.rollback()
            logger.warning(f"Could not create ingestion run record: {e}")

    def _record(self, level, phase, message, data=None):
        event = {
            'ts': datetime.now(timezone.utc).isoformat(),
            'level': level,
            'phase': phase,
            'message': message,
        }
        if data is not None:
            event['data'] = data
        if len(self.events) < MAX_EVENTS:
            self.events.append(event)
        logger.log(_LEVELS[level], f"[{phase}] {message}" + (f" {data}" if data is not None else ''))

    def log(self, phase, message, data=None):
        self._record('info', phase, message, data)

    def warn(self, phase, message, data=None):
        self._record('warn', phase, message, data)

    def error(self, phase, message, data=None):
        self._record('error', phase, message, data)

    @property
    def elapsed_ms(self):
        return int((time.monotonic() - self._start) * 1000)

    def persist(self, status, summary=None, error=None):
        """Write final status, summary and events. Returns True on success."""
        if self.run_id is None:
            return False
        try:
            run = db.session.get(IngestionRun, self.run_id)
            if run is None:
                return False
            run.status = status
            run.finished_at = datetime.now(timezone.utc)
            run.duration_ms = self.elapsed_ms
            run.summary_json = summary
            run.events_json = self.events
            run.error = error
            db.session.commit()
            return True
        except Exception as e:
            db.session.rollback()
            logger.warning(f"Could not persist ingestion run {self.run_id}: {e}")
            return False
