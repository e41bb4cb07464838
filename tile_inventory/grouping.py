import locale
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from tile_inventory.logging_config import get_child_logger
from tile_inventory.models.tile import (
    NO_PREFIX,
    TileGroup,
    TileRecord,
    TileVariantDisplay,
)

logger = get_child_logger("grouping")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _identity_label(type_suffix: str) -> str:
    return type_suffix


def configure_collation(name: str = "") -> Optional[str]:
    """
    Switch the process LC_COLLATE locale used to sort variant labels.

    An empty name takes the locale from the environment (LC_ALL, LC_COLLATE,
    LANG). Returns the locale now in effect, or None when ``name`` is not
    installed and labels keep sorting in codepoint order.
    """
    try:
        return locale.setlocale(locale.LC_COLLATE, name)
    except locale.Error:
        logger.warning("Collation locale not available; sorting labels by codepoint", extra={"locale": name})
        return None


def format_dimension(value) -> str:
    """Render 12.0 as "12" so keys match what users typed."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def group_key(prefix: str, width, height) -> str:
    return f"{prefix}_{format_dimension(width)}x{format_dimension(height)}"


def group_tiles(
    records: Iterable[TileRecord],
    suffix_label: Callable[[str], str] = _identity_label,
) -> List[TileGroup]:
    """
    Group flat tile records by (model prefix, width, height).

    Variants inside a group are ordered by their display label with
    the collation of the process LC_COLLATE locale (see
    ``configure_collation``). Groups are ordered newest first by the earliest
    resolved ``createdAt`` of their variants; groups without any resolved
    timestamp go last. Ties fall back to record id and group key so the
    result does not depend on input order.

    Args:
        records: Tile records in any order
        suffix_label: Maps a stored type tag to its display label

    Returns:
        Display groups, freshly built on every call
    """
    buckets: Dict[str, dict] = {}

    for record in records:
        prefix = record.model_number_prefix or NO_PREFIX
        key = group_key(prefix, record.width, record.height)

        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = {
                "prefix": prefix,
                "width": record.width,
                "height": record.height,
                "variants": [],
            }

        bucket["variants"].append(
            TileVariantDisplay(
                id=record.id,
                type_suffix=record.type_suffix,
                label=suffix_label(record.type_suffix),
                quantity=record.quantity,
                created_at=record.created_at,
            )
        )

    groups = []
    for key, bucket in buckets.items():
        variants = sorted(
            bucket["variants"], key=lambda v: (locale.strxfrm(v.label), v.id)
        )
        resolved = [v.created_at for v in variants if v.created_at is not None]
        groups.append(
            TileGroup(
                group_key=key,
                model_number_prefix=bucket["prefix"],
                width=bucket["width"],
                height=bucket["height"],
                variants=variants,
                group_created_at=min(resolved) if resolved else None,
            )
        )

    groups.sort(key=lambda g: g.group_key)
    groups.sort(key=lambda g: g.group_created_at or _EPOCH, reverse=True)
    return groups


def _parse_number(term: Optional[str]) -> Optional[float]:
    if term is None or term.strip() == "":
        return None
    try:
        return float(term)
    except ValueError:
        return None


def filter_tiles(
    records: Iterable[TileRecord],
    type_term: Optional[str] = None,
    width: Optional[str] = None,
    height: Optional[str] = None,
    suffix_label: Callable[[str], str] = _identity_label,
) -> List[TileRecord]:
    """
    Search records by type (substring of the tag or its label, case
    insensitive) and by exact width and height. Blank or non-numeric
    dimension terms match everything.
    """
    term = (type_term or "").strip().lower()
    width_value = _parse_number(width)
    height_value = _parse_number(height)

    matches = []
    for record in records:
        if term and term not in record.type_suffix.lower() and term not in suffix_label(record.type_suffix).lower():
            continue
        if width_value is not None and record.width != width_value:
            continue
        if height_value is not None and record.height != height_value:
            continue
        matches.append(record)
    return matches
