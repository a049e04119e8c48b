"""
Rewards Catalog for the rewards program.

The catalog is a closed union over three variants, validated when entries
are loaded rather than when they are redeemed:

    voucher  id, title, description, points, value[, validityDays, imageUrl]
    bundle   id, title, description, points[, imageUrl]
    swag     id, title, description, points[, stock, imageUrl]

Swag without ``stock`` is unlimited.

Any other key, a missing required key or a wrongly typed value rejects the
whole load with CatalogValidationError; nothing is written.
"""
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Iterable

from flask import current_app

from ..extensions import db
from ..models.rewards import RewardItem, RewardItemType
from ..utils.exceptions import CatalogValidationError, UnknownRewardError


COMMON_REQUIRED = ('id', 'title', 'points', 'type')
COMMON_OPTIONAL = ('description', 'imageUrl', 'isActive')

VARIANT_FIELDS = {
    RewardItemType.VOUCHER.value: {'required': ('value',), 'optional': ('validityDays',)},
    RewardItemType.BUNDLE.value: {'required': (), 'optional': ()},
    RewardItemType.SWAG.value: {'required': (), 'optional': ('stock',)},
}


# Storefront default catalog
DEFAULT_REWARDS = [
    {
        'id': 'voucher-500',
        'title': 'S$500 Voucher',
        'description': 'Redeem S$500 off your next order',
        'points': 20000,
        'type': 'voucher',
        'value': 500,
    },
    {
        'id': 'voucher-1500',
        'title': 'S$1,500 Voucher',
        'description': 'Redeem S$1,500 off your next order',
        'points': 50000,
        'type': 'voucher',
        'value': 1500,
    },
    {
        'id': 'bundle-120',
        'title': 'Volume Bundle Deal',
        'description': 'Buy 120 get 12 free on select products',
        'points': 100000,
        'type': 'bundle',
    },
    {
        'id': 'swag-bartool',
        'title': 'Premium Bar Tool Set',
        'description': 'Professional-grade bar tools with custom engraving',
        'points': 30000,
        'type': 'swag',
        'stock': 50,
    },
]


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_reward_entry(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate one catalog entry and return the normalized column values.

    Raises:
        CatalogValidationError: malformed entry
    """
    if not isinstance(data, dict):
        raise CatalogValidationError('entry must be an object')

    reward_id = data.get('id')
    if not isinstance(reward_id, str) or not reward_id.strip():
        raise CatalogValidationError('id must be a non-empty string')

    missing = [f for f in COMMON_REQUIRED if data.get(f) is None]
    if missing:
        raise CatalogValidationError(f"missing required fields: {', '.join(missing)}", reward_id)

    reward_type = data['type']
    variant = VARIANT_FIELDS.get(reward_type)
    if variant is None:
        raise CatalogValidationError(
            f"type must be one of: {sorted(VARIANT_FIELDS)}, got {reward_type!r}", reward_id
        )

    allowed = set(COMMON_REQUIRED) | set(COMMON_OPTIONAL) | set(variant['required']) | set(variant['optional'])
    unexpected = sorted(set(data) - allowed)
    if unexpected:
        raise CatalogValidationError(
            f"fields not allowed on a {reward_type} reward: {', '.join(unexpected)}", reward_id
        )

    missing = [f for f in variant['required'] if data.get(f) is None]
    if missing:
        raise CatalogValidationError(
            f"{reward_type} reward requires: {', '.join(missing)}", reward_id
        )

    title = data['title']
    if not isinstance(title, str) or not title.strip():
        raise CatalogValidationError('title must be a non-empty string', reward_id)

    description = data.get('description') or ''
    if not isinstance(description, str):
        raise CatalogValidationError('description must be a string', reward_id)

    if not _is_int(data['points']) or data['points'] <= 0:
        raise CatalogValidationError('points must be a positive integer', reward_id)

    values = {
        'id': reward_id.strip(),
        'title': title.strip(),
        'description': description,
        'points': data['points'],
        'reward_type': reward_type,
        'value': None,
        'stock': None,
        'validity_days': None,
        'image_url': data.get('imageUrl'),
        'is_active': bool(data.get('isActive', True)),
    }

    if reward_type == RewardItemType.VOUCHER.value:
        try:
            value = Decimal(str(data['value']))
        except (InvalidOperation, ValueError):
            raise CatalogValidationError('value must be a number', reward_id)
        if isinstance(data['value'], bool) or value <= 0:
            raise CatalogValidationError('value must be positive', reward_id)
        values['value'] = value

        validity_days = data.get('validityDays')
        if validity_days is not None:
            if not _is_int(validity_days) or validity_days <= 0:
                raise CatalogValidationError('validityDays must be a positive integer', reward_id)
            values['validity_days'] = validity_days

    elif reward_type == RewardItemType.SWAG.value:
        stock = data.get('stock')
        if stock is not None:
            if not _is_int(stock) or stock < 0:
                raise CatalogValidationError('stock must be a non-negative integer', reward_id)
            values['stock'] = stock

    return values


def load_catalog(entries: Iterable[Dict[str, Any]]) -> List[RewardItem]:
    """
    Validate every entry, then upsert them all in one transaction.

    Raises:
        CatalogValidationError: any entry is malformed or ids repeat
    """
    normalized = [validate_reward_entry(entry) for entry in entries]

    seen = set()
    for values in normalized:
        if values['id'] in seen:
            raise CatalogValidationError('duplicate id in catalog load', values['id'])
        seen.add(values['id'])

    items = []
    try:
        for values in normalized:
            item = db.session.get(RewardItem, values['id'])
            if item is None:
                item = RewardItem(**values)
                db.session.add(item)
            else:
                for key, value in values.items():
                    setattr(item, key, value)
            items.append(item)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(f"Rewards catalog loaded: {len(items)} entries")
    return items


def seed_default_catalog() -> List[RewardItem]:
    """Insert the default rewards that do not exist yet."""
    missing = [r for r in DEFAULT_REWARDS if db.session.get(RewardItem, r['id']) is None]
    if not missing:
        return []
    return load_catalog(missing)


def get_reward(reward_id: str) -> RewardItem:
    """
    Active catalog entry by id.

    Raises:
        UnknownRewardError: id not found or inactive
    """
    item = db.session.get(RewardItem, reward_id) if reward_id else None
    if item is None or not item.is_active:
        raise UnknownRewardError(reward_id)
    return item


def list_rewards(include_inactive: bool = False, reward_type: str = None) -> List[RewardItem]:
    """Catalog entries ordered by points cost."""
    query = RewardItem.query
    if not include_inactive:
        query = query.filter(RewardItem.is_active.is_(True))
    if reward_type:
        query = query.filter(RewardItem.reward_type == reward_type)
    return query.order_by(RewardItem.points.asc(), RewardItem.id.asc()).all()
