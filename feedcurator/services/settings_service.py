import logging
import math
from dataclasses import asdict, dataclass, fields
from feedcurator.extensions import db
from feedcurator.models.system_setting import GLOBAL_SCOPE, Setting

logger = logging.getLogger(__name__)

LLM_PROVIDERS = ('openai', 'anthropic', 'xai')


@dataclass(frozen=True)
class ScoringSettings:
    """Pipeline tunables. Field defaults are the single canonical default table."""
    embedding_llm_threshold: float = 0.35
    embedding_serendipity_min: float = 0.20
    embedding_serendipity_max: float = 0.35
    embedding_exclusion_threshold: float = 0.60
    serendipity_sample_size: int = 5
    max_llm_candidates: int = 40
    llm_batch_size: int = 10
    blended_primary_weight: float = 0.7
    blended_secondary_weight: float = 0.3
    semantic_dedup_threshold: float = 0.85
    min_relevance_score: float = 0.5
    max_articles_per_digest: int = 50
    embedding_dimensions: int = 512
    freshness_window_hours: int = 48
    new_account_freshness_window_hours: int = 168
    new_account_age_days: int = 7
    llm_provider: str = 'openai'

    def to_dict(self):
        return asdict(self)


DEFAULTS = ScoringSettings()

# (min, max) bounds; None means unbounded on that side
_BOUNDS = {
    'embedding_llm_threshold': (-1.0, 1.0),
    'embedding_serendipity_min': (-1.0, 1.0),
    'embedding_serendipity_max': (-1.0, 1.0),
    'embedding_exclusion_threshold': (-1.0, 1.0),
    'serendipity_sample_size': (0, 100),
    'max_llm_candidates': (0, 1000),
    'llm_batch_size': (1, 50),
    'blended_primary_weight': (0.0, 1.0),
    'blended_secondary_weight': (0.0, 1.0),
    'semantic_dedup_threshold': (0.0, 1.0),
    'min_relevance_score': (0.0, 1.0),
    'max_articles_per_digest': (1, 500),
    'embedding_dimensions': (1, 4096),
    'freshness_window_hours': (1, None),
    'new_account_freshness_window_hours': (1, None),
    'new_account_age_days': (0, None),
}


class SettingsService:
    def get_scoring_settings(self):
        """Typed settings: stored string values over canonical defaults.

        Malformed stored values are logged and replaced by the default rather
        than failing the pipeline.
        """
        raw = Setting.get_all(GLOBAL_SCOPE)
        return self._normalize(raw, strict=False)

    def update_scoring_settings(self, updates):
        """Validate and persist updates. Raises ValueError on any bad value."""
        unknown = sorted(set(updates) - {f.name for f in fields(ScoringSettings)})
        if unknown:
            raise ValueError(f'Unknown settings: {unknown}')

        current = self.get_scoring_settings().to_dict()
        merged = {**current, **updates}
        normalized = self._normalize(merged, strict=True)

        for key in updates:
            Setting.set_value(key, getattr(normalized, key), GLOBAL_SCOPE)
        db.session.commit()
        return normalized

    def get_reader_value(self, reader_id, key, default=None):
        return Setting.get_value(key, default, scope=reader_id)

    def set_reader_value(self, reader_id, key, value):
        Setting.set_value(key, value, scope=reader_id)

    def _normalize(self, payload, strict=False):
        data = payload if isinstance(payload, dict) else {}
        values = {}

        for field in fields(ScoringSettings):
            default = field.default
            raw = data.get(field.name, default)
            try:
                value = self._coerce(field.name, raw, type(default))
            except ValueError as e:
                if strict:
                    raise
                logger.warning(f"Ignoring stored setting {field.name}={raw!r}: {e}")
                value = default
            values[field.name] = value

        settings = ScoringSettings(**values)
        if settings.embedding_serendipity_min > settings.embedding_serendipity_max:
            if strict:
                raise ValueError('"embedding_serendipity_min" must not exceed "embedding_serendipity_max"')
            logger.warning("Serendipity band is inverted; band will be empty")
        return settings

    def _coerce(self, name, raw, kind):
        if kind is str:
            value = str(raw or '').strip().lower()
            if name == 'llm_provider' and value not in LLM_PROVIDERS:
                raise ValueError(f'"{name}" must be one of {LLM_PROVIDERS}')
            return value

        try:
            number = float(raw)
        except (TypeError, ValueError, OverflowError):
            raise ValueError(f'"{name}" must be a number')
        if not math.isfinite(number):
            raise ValueError(f'"{name}" must be a finite number')
        if kind is int and number != int(number):
            raise ValueError(f'"{name}" must be an integer')
        value = int(number) if kind is int else number

        low, high = _BOUNDS.get(name, (None, None))
        if (low is not None and value < low) or (high is not None and value > high):
            raise ValueError(f'"{name}" must be between {low} and {high}')
        return value
