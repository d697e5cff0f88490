"""Filtered, paginated catalog queries.

All filtering goes through ORM lookups, so every value reaches the
database as a bound parameter. Free-text search only ever touches the
fixed column list for each entity kind in ``SEARCH_FIELDS``.
"""

import math

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db.models import F, Q

from ..models import Asset, AssetLogEntry, Category, Supplier
from .state import VALID_STATUSES

# Explicit whitelist of filter keys honoured in a filter bag
ALLOWED_FILTER_FIELDS = {
    "q",
    "status",
    "category",
    "assigned_user",
}

SEARCH_FIELDS = {
    "asset": ["asset_tag", "model", "serial_number"],
    "category": ["name", "description"],
    "supplier": ["name", "contact_person", "phone", "email"],
}


def list_page_size() -> int:
    return getattr(settings, "LIST_PAGE_SIZE", 10)


def audit_page_size() -> int:
    return getattr(settings, "AUDIT_PAGE_SIZE", 25)


def validate_filter_params(params) -> dict:
    """Strip unknown keys and empty values from a filter bag."""
    return {
        k: params.get(k)
        for k in ALLOWED_FILTER_FIELDS
        if k in params and params.get(k) not in (None, "")
    }


def parse_page(value) -> int:
    """Coerce a requested page number; anything unusable becomes 1."""
    try:
        page = int(value)
    except (TypeError, ValueError):
        return 1
    return max(page, 1)


def _parse_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def build_text_query(kind: str, q: str) -> Q:
    """OR together a case-insensitive substring match on each column."""
    combined = Q()
    for field in SEARCH_FIELDS[kind]:
        combined |= Q(**{f"{field}__icontains": q})
    return combined


def build_asset_filter_queryset(filters: dict):
    """Queryset of assets matching a validated filter bag.

    Each row is annotated with the display labels of its foreign keys.
    Filter values that cannot be interpreted are ignored rather than
    rejected.
    """
    queryset = Asset.objects.select_related(
        "category", "supplier", "assigned_to"
    ).annotate(
        category_name=F("category__name"),
        supplier_name=F("supplier__name"),
        assigned_to_name=F("assigned_to__display_name"),
        assigned_to_username=F("assigned_to__username"),
    )

    q = str(filters.get("q", "")).strip()
    if q:
        queryset = queryset.filter(build_text_query("asset", q))

    status = filters.get("status", "")
    if status in VALID_STATUSES:
        queryset = queryset.filter(status=status)

    category_id = _parse_id(filters.get("category"))
    if category_id is not None:
        queryset = queryset.filter(category_id=category_id)

    user_id = _parse_id(filters.get("assigned_user"))
    if user_id is not None:
        queryset = queryset.filter(assigned_to_id=user_id)

    return queryset.order_by("asset_tag")


def _reference_queryset(model, kind: str, filters: dict):
    queryset = model.objects.all()
    q = str(filters.get("q", "")).strip()
    if q:
        queryset = queryset.filter(build_text_query(kind, q))
    return queryset.order_by("name")


def paginate(queryset, page, page_size: int) -> dict:
    """Count a queryset and slice one page out of it.

    The page number is clamped to at least 1 but not to the last page:
    asking past the end yields no rows alongside the real page count.
    """
    current_page = parse_page(page)
    total_count = queryset.count()
    total_pages = math.ceil(total_count / page_size)
    offset = (current_page - 1) * page_size
    if offset >= total_count:
        results = []
    else:
        results = list(queryset[offset : offset + page_size])
    return {
        "results": results,
        "total_count": total_count,
        "total_pages": total_pages,
        "current_page": current_page,
        "page_size": page_size,
    }


def fetch_page(kind: str, params) -> dict:
    """Run a list/search query for ``kind`` ('asset', 'category' or
    'supplier').

    ``params`` is any mapping (a QueryDict works): ``q`` for free text,
    ``status``/``category``/``assigned_user`` for asset filters and ``p``
    for the page number.
    """
    filters = validate_filter_params(params)
    if kind == "asset":
        queryset = build_asset_filter_queryset(filters)
    elif kind == "category":
        queryset = _reference_queryset(Category, kind, filters)
    elif kind == "supplier":
        queryset = _reference_queryset(Supplier, kind, filters)
    else:
        raise ValidationError(f"'{kind}' is not a searchable entity.")
    return paginate(queryset, params.get("p"), list_page_size())


def fetch_asset_history(asset_id, params) -> dict:
    """One page of an asset's log entries, newest first."""
    queryset = (
        AssetLogEntry.objects.filter(asset_id=asset_id)
        .select_related("user")
        .order_by("-timestamp", "-pk")
    )
    return paginate(queryset, params.get("p"), audit_page_size())
