"""
Rewards API endpoints for the loyalty program.

Handles:
- Account snapshot (balance, tier, progress, benefits)
- Rewards catalog listing and loading
- Earning, adjustments and redemption
- Voucher lifecycle
- Expiring points
- Missing points reports
- Ledger history and company summaries

Identity comes from the upstream gateway via X-User-Id / X-Company-Id;
support and fulfilment operations also need a staff X-User-Role.
Service exceptions are turned into standard error responses by the
blueprint error handler below.
"""
from datetime import datetime, timezone
from flask import Blueprint, request, jsonify, g, current_app

from ..middleware.session_auth import require_session, require_role
from ..services.rewards_service import RewardsService
from ..services.audit_query import AuditQueryService
from ..services import rewards_catalog
from ..services.voucher_lifecycle import find_by_confirmation_code
from ..utils.errors import bad_request, exception_response, ErrorCode
from ..utils.exceptions import RewardsError, AuthorizationError

rewards_bp = Blueprint('rewards', __name__)

# Roles allowed on staff operations
ADMIN_ROLES = ['admin']
SUPPORT_ROLES = ['support', 'admin']
FULFILMENT_ROLES = ['fulfilment', 'support', 'admin']
CREDIT_ROLES = ['system', 'support', 'admin']


@rewards_bp.errorhandler(RewardsError)
def handle_rewards_error(error):
    return exception_response(error)


def _rewards() -> RewardsService:
    return RewardsService(g.user_id, g.company_id)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _parse_datetime(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    # Stored as naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ==============================================================================
# ACCOUNT
# ==============================================================================

@rewards_bp.route('/account', methods=['GET'])
@require_session
def get_account():
    """
    Get the caller's rewards account.

    Returns:
        points, tier, lifetime_points, yearly_spend, points_to_next_tier,
        tier_progress, benefits, redeemed_rewards
    """
    return jsonify(_rewards().summary())


# ==============================================================================
# CATALOG
# ==============================================================================

@rewards_bp.route('/catalog', methods=['GET'])
@require_session
def list_catalog():
    """
    List redeemable rewards.

    Query params:
        type: voucher | bundle | swag
        include_inactive: Include inactive rewards (default false)
    """
    include_inactive = request.args.get('include_inactive', 'false').lower() == 'true'
    rewards = rewards_catalog.list_rewards(
        include_inactive=include_inactive,
        reward_type=request.args.get('type'),
    )
    return jsonify({
        'rewards': [r.to_dict() for r in rewards],
        'count': len(rewards),
    })


@rewards_bp.route('/catalog', methods=['POST'])
@require_session
@require_role(ADMIN_ROLES)
def load_catalog():
    """
    Load or update catalog entries.

    JSON body:
        rewards: list of catalog entries (all validated before any write)
    """
    entries = _json_body().get('rewards')
    if not isinstance(entries, list) or not entries:
        return bad_request('rewards must be a non-empty list', ErrorCode.MISSING_FIELD)

    items = rewards_catalog.load_catalog(entries)
    return jsonify({
        'success': True,
        'rewards': [item.to_dict() for item in items],
        'count': len(items),
    }), 201


# ==============================================================================
# EARN / ADJUST / REDEEM
# ==============================================================================

@rewards_bp.route('/earn', methods=['POST'])
@require_session
@require_role(CREDIT_ROLES)
def earn_points():
    """
    Credit points.

    JSON body:
        points: Positive integer (required)
        description: What the points are for (required)
        order_id: Order the points were earned on
        category: purchase | bonus | referral | milestone | adjustment | restore
    """
    data = _json_body()
    if 'points' not in data:
        return bad_request('points is required', ErrorCode.MISSING_FIELD)
    description = data.get('description') or (
        f"Order {data['order_id']}" if data.get('order_id') else None
    )
    if not description:
        return bad_request('description is required', ErrorCode.MISSING_FIELD)

    rewards = _rewards()
    balance = rewards.earn_points(
        data['points'],
        description,
        order_id=data.get('order_id'),
        category=data.get('category', 'purchase'),
    )
    return jsonify({
        'success': True,
        'points': balance,
        'account': rewards.summary(),
    })


@rewards_bp.route('/adjust', methods=['POST'])
@require_session
@require_role(SUPPORT_ROLES)
def adjust_points():
    """
    Support correction.

    JSON body:
        points: Non-zero integer, may be negative (required)
        reason: Why (required)
        reference_id: Ticket or order reference
    """
    data = _json_body()
    if 'points' not in data:
        return bad_request('points is required', ErrorCode.MISSING_FIELD)

    rewards = _rewards()
    balance = rewards.adjust_points(data['points'], data.get('reason'), reference_id=data.get('reference_id'))
    return jsonify({'success': True, 'points': balance})


@rewards_bp.route('/redeem', methods=['POST'])
@require_session
def redeem_reward():
    """
    Redeem a reward.

    JSON body:
        reward_id: Catalog id (required)

    Returns:
        New balance, ledger entry and issued voucher (for voucher rewards)
    """
    reward_id = _json_body().get('reward_id')
    if not reward_id:
        return bad_request('reward_id is required', ErrorCode.MISSING_FIELD)

    result = _rewards().redeem_reward(reward_id)
    return jsonify(result), 201


# ==============================================================================
# VOUCHERS
# ==============================================================================

@rewards_bp.route('/vouchers', methods=['GET'])
@require_session
def list_vouchers():
    """
    List vouchers, newest first.

    Query params:
        status: pending | confirmed | used | expired
    """
    vouchers = _rewards().vouchers_by_status(request.args.get('status'))
    return jsonify({
        'vouchers': [v.to_dict() for v in vouchers],
        'count': len(vouchers),
    })


@rewards_bp.route('/vouchers/available', methods=['GET'])
@require_session
def list_available_vouchers():
    """Confirmed, unexpired vouchers usable at checkout."""
    vouchers = _rewards().available_vouchers()
    return jsonify({
        'vouchers': [v.to_dict() for v in vouchers],
        'count': len(vouchers),
    })


@rewards_bp.route('/vouchers/lookup/<code>', methods=['GET'])
@require_session
@require_role(FULFILMENT_ROLES)
def lookup_voucher(code):
    """Find any account's voucher by its confirmation code (case-insensitive)."""
    voucher = find_by_confirmation_code(code)
    return jsonify({'voucher': voucher.to_dict(), 'account_id': voucher.account_id})


@rewards_bp.route('/vouchers/<int:redemption_id>/events', methods=['GET'])
@require_session
def list_voucher_events(redemption_id):
    """
    Audit trail of a voucher, newest first.

    Query params:
        limit: Page size (default 50, max 200)
        offset: Events to skip
    """
    page = _rewards().voucher_events(
        redemption_id,
        limit=request.args.get('limit', type=int),
        offset=request.args.get('offset', type=int),
    )
    return jsonify({
        'events': [e.to_dict() for e in page['entries']],
        'total': page['total'],
        'has_more': page['has_more'],
    })


@rewards_bp.route('/vouchers/<int:redemption_id>', methods=['PATCH'])
@require_session
@require_role(FULFILMENT_ROLES)
def update_voucher(redemption_id):
    """
    Move a voucher through its lifecycle.

    JSON body:
        status: confirmed | used | expired (required)
        order_id: Required when status is used
        used_date: ISO timestamp (defaults to now)
    """
    data = _json_body()
    status = data.get('status')
    if not status:
        return bad_request('status is required', ErrorCode.MISSING_FIELD)

    used_date = None
    if data.get('used_date'):
        used_date = _parse_datetime(data['used_date'])
        if used_date is None:
            return bad_request('used_date must be an ISO timestamp')

    voucher = _rewards().update_voucher_status(
        redemption_id, status, used_date=used_date, order_id=data.get('order_id')
    )
    return jsonify({'success': True, 'voucher': voucher.to_dict()})


# ==============================================================================
# EXPIRING POINTS
# ==============================================================================

@rewards_bp.route('/expiring', methods=['GET'])
@require_session
def list_expiring_points():
    """
    Point batches expiring soon.

    Query params:
        days: Look-ahead window (default POINTS_EXPIRY_WARNING_DAYS)
    """
    days = request.args.get('days', type=int)
    if days is not None and days < 0:
        return bad_request('days must be non-negative')

    batches = _rewards().expiring_points(days)
    return jsonify({
        'batches': [b.to_dict() for b in batches],
        'total_points': sum(b.points for b in batches),
        'count': len(batches),
    })


@rewards_bp.route('/expiring/<int:batch_id>/expire', methods=['POST'])
@require_session
@require_role(CREDIT_ROLES)
def expire_batch(batch_id):
    """Expire one batch now. Repeating the call is a no-op."""
    rewards = _rewards()
    entry = rewards.expire_points(batch_id)
    return jsonify({
        'success': True,
        'expired': entry is not None,
        'ledger_entry': entry.to_dict() if entry else None,
        'points': rewards.points,
    })


# ==============================================================================
# MISSING POINTS
# ==============================================================================

@rewards_bp.route('/missing-points', methods=['GET'])
@require_session
def list_missing_points():
    reports = _rewards().missing_points(request.args.get('status'))
    return jsonify({
        'reports': [r.to_dict() for r in reports],
        'count': len(reports),
    })


@rewards_bp.route('/missing-points', methods=['POST'])
@require_session
def report_missing_points():
    """
    Report points missing from an order.

    JSON body:
        order_id, order_date (YYYY-MM-DD), expected_points, reason (all required)
    """
    data = _json_body()
    for field in ['order_id', 'order_date', 'expected_points', 'reason']:
        if data.get(field) in (None, ''):
            return bad_request(f'{field} is required', ErrorCode.MISSING_FIELD)

    report = _rewards().report_missing_points(
        data['order_id'], data['order_date'], data['expected_points'], data['reason']
    )
    return jsonify({'success': True, 'report': report.to_dict()}), 201


@rewards_bp.route('/missing-points/<int:report_id>', methods=['PATCH'])
@require_session
@require_role(SUPPORT_ROLES)
def update_missing_points(report_id):
    """
    Update a report's status. Does not credit points.

    JSON body:
        status: investigating | resolved | rejected (required)
        resolution_note: Optional note
    """
    data = _json_body()
    if not data.get('status'):
        return bad_request('status is required', ErrorCode.MISSING_FIELD)

    report = _rewards().update_missing_points_status(
        report_id, data['status'], resolution_note=data.get('resolution_note')
    )
    return jsonify({'success': True, 'report': report.to_dict()})


# ==============================================================================
# HISTORY
# ==============================================================================

@rewards_bp.route('/history', methods=['GET'])
@require_session
def points_history():
    """
    Reverse-chronological ledger.

    Query params:
        limit: Page size (default 50, max 200)
        offset: Entries to skip
        type: Filter by transaction type (repeatable)
    """
    page = _rewards().points_history(
        limit=request.args.get('limit', type=int),
        offset=request.args.get('offset', type=int),
        transaction_types=request.args.getlist('type') or None,
    )
    return jsonify({
        'entries': [e.to_dict() for e in page['entries']],
        'total': page['total'],
        'limit': page['limit'],
        'offset': page['offset'],
        'has_more': page['has_more'],
    })


@rewards_bp.route('/company/<company_id>/summary', methods=['GET'])
@require_session
def company_summary(company_id):
    """Points totals for a company pool, with ranked member contributions."""
    if g.company_id != company_id:
        current_app.logger.warning(
            f"User {g.user_id} requested summary for company {company_id} outside their session"
        )
        raise AuthorizationError('Company summary is only available to members of that company')

    return jsonify(AuditQueryService().company_summary(company_id))
