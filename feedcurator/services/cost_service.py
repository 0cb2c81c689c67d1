import logging
from datetime import date, datetime, timezone
from feedcurator.extensions import db
from feedcurator.models.cost import LLMCallLog

logger = logging.getLogger(__name__)


def _day_bounds(target_date):
    start = datetime(target_date.year, target_date.month, target_date.day, tzinfo=timezone.utc)
    end = datetime(target_date.year, target_date.month, target_date.day, 23, 59, 59, tzinfo=timezone.utc)
    return start, end


class CostService:
    def get_daily_usage(self, target_date=None):
        """Get total token usage and cost for a given date."""
        start, end = _day_bounds(target_date or date.today())

        result = db.session.query(
            db.func.coalesce(db.func.sum(LLMCallLog.total_tokens), 0),
            db.func.coalesce(db.func.sum(LLMCallLog.cost_usd), 0.0),
            db.func.count(LLMCallLog.id),
        ).filter(
            LLMCallLog.created_at >= start,
            LLMCallLog.created_at <= end,
        ).first()

        return {
            'total_tokens': result[0],
            'total_cost_usd': round(float(result[1]), 6),
            'calls_count': result[2],
        }

    def get_usage_by_purpose(self, target_date=None):
        """Per-purpose breakdown (relevance_scoring, embedding, ...) for a date."""
        start, end = _day_bounds(target_date or date.today())

        rows = db.session.query(
            LLMCallLog.call_purpose,
            db.func.sum(LLMCallLog.total_tokens),
            db.func.sum(LLMCallLog.cost_usd),
            db.func.count(LLMCallLog.id),
        ).filter(
            LLMCallLog.created_at >= start,
            LLMCallLog.created_at <= end,
        ).group_by(LLMCallLog.call_purpose).all()

        return {
            row[0]: {
                'tokens': int(row[1] or 0),
                'cost_usd': round(float(row[2] or 0.0), 6),
                'calls': row[3],
            }
            for row in rows
        }
