from datetime import date
from flask import Blueprint, jsonify, request
from feedcurator.models.cost import LLMCallLog
from feedcurator.routes.admin import require_admin_key
from feedcurator.services.cost_service import CostService

cost_bp = Blueprint('cost', __name__)
cost_service = CostService()


@cost_bp.route('/today')
@require_admin_key
def today():
    """Today's token usage and spend, overall and per call purpose."""
    return jsonify({
        **cost_service.get_daily_usage(),
        'by_purpose': cost_service.get_usage_by_purpose(),
        'date': date.today().isoformat(),
    })


@cost_bp.route('/logs')
@require_admin_key
def logs():
    """Raw provider call logs (paginated, filterable by purpose/reader)."""
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 50, type=int), 200)
    purpose = request.args.get('purpose')
    reader_id = request.args.get('reader_id', type=int)

    query = LLMCallLog.query
    if purpose:
        query = query.filter_by(call_purpose=purpose)
    if reader_id:
        query = query.filter_by(reader_id=reader_id)

    pagination = query.order_by(
        LLMCallLog.created_at.desc()
    ).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'logs': [entry.to_dict() for entry in pagination.items],
        'total': pagination.total,
        'page': page,
    })
