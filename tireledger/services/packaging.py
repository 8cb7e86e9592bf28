"""
Shipping Packager

Partitions cart lines into carrier-compliant packages for rate lookup.

Lines are grouped by their effective (length, width, height); within a group
the total weight is split greedily into full MAX_PACKAGE_WEIGHT_KG packages
plus one remainder. That is the minimum package count for the group and
conserves weight exactly. Dimensions are never mixed across groups.

Pure and synchronous: no stock, network or settings mutation.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from tireledger.core.config import settings
from tireledger.modules.shipping.carriers.base import Package

logger = logging.getLogger(__name__)

DESCRIPTION_NAMES_MAX = 50
DEFAULT_PACKAGE_DESCRIPTION = "Default tire package"


@dataclass(frozen=True)
class PackItem:
    """One cart line as the packager sees it."""
    product_id: int
    name: str
    quantity: int
    weight_kg: Optional[float] = None
    length_cm: Optional[float] = None
    width_cm: Optional[float] = None
    height_cm: Optional[float] = None


@dataclass(frozen=True)
class PackagingDefaults:
    item_weight_kg: float
    item_diameter_cm: float
    item_height_cm: float
    max_package_weight_kg: float

    @classmethod
    def from_settings(cls) -> "PackagingDefaults":
        return cls(
            item_weight_kg=settings.DEFAULT_ITEM_WEIGHT_KG,
            item_diameter_cm=settings.DEFAULT_ITEM_DIAMETER_CM,
            item_height_cm=settings.DEFAULT_ITEM_HEIGHT_CM,
            max_package_weight_kg=settings.MAX_PACKAGE_WEIGHT_KG,
        )


def _positive_or(value: Optional[float], default: float) -> float:
    if value is None or value <= 0:
        return default
    return float(value)


def _dimensions(item: PackItem, defaults: PackagingDefaults) -> Tuple[float, float, float]:
    return (
        _positive_or(item.length_cm, defaults.item_diameter_cm),
        _positive_or(item.width_cm, defaults.item_diameter_cm),
        _positive_or(item.height_cm, defaults.item_height_cm),
    )


def _weight(item: PackItem, defaults: PackagingDefaults) -> Decimal:
    return Decimal(str(_positive_or(item.weight_kg, defaults.item_weight_kg)))


def describe(items: Sequence[PackItem]) -> str:
    """Tire package (<names>) with the name list capped at 50 chars, "..." when grouped."""
    names = ", ".join(item.name for item in items)[:DESCRIPTION_NAMES_MAX]
    suffix = "..." if len(items) > 1 else ""
    return f"Tire package ({names}{suffix})"


def split_weight(total: Decimal, max_weight: Decimal) -> List[Decimal]:
    """
    Split total into the fewest chunks that each stay <= max_weight.

    Every chunk is max_weight except possibly the last.
    """
    if max_weight <= 0:
        raise ValueError("max_weight must be positive")

    chunks = []
    remaining = total
    while remaining > 0:
        chunk = min(remaining, max_weight)
        chunks.append(chunk)
        remaining -= chunk
    return chunks


def pack(
    items: Sequence[PackItem],
    defaults: Optional[PackagingDefaults] = None,
) -> List[Package]:
    """
    Partition cart lines into packages.

    Args:
        items: Cart lines (quantity > 0)
        defaults: Weight/dimension fallbacks, settings when omitted

    Returns:
        Packages in first-seen group order. An empty cart yields a single
        default package so a rate request can still be made.
    """
    defaults = defaults or PackagingDefaults.from_settings()
    items = [item for item in items if item.quantity > 0]

    if not items:
        return [
            Package(
                weight=defaults.item_weight_kg,
                length=defaults.item_diameter_cm,
                width=defaults.item_diameter_cm,
                height=defaults.item_height_cm,
                description=DEFAULT_PACKAGE_DESCRIPTION,
            )
        ]

    # dicts keep insertion order, so groups come out first-seen
    groups: Dict[Tuple[float, float, float], List[PackItem]] = {}
    for item in items:
        groups.setdefault(_dimensions(item, defaults), []).append(item)

    max_weight = Decimal(str(defaults.max_package_weight_kg))
    packages: List[Package] = []

    for (length, width, height), group_items in groups.items():
        total = sum(
            (_weight(item, defaults) * item.quantity for item in group_items),
            Decimal("0"),
        )
        description = describe(group_items)

        for chunk in split_weight(total, max_weight):
            packages.append(
                Package(
                    weight=float(chunk),
                    length=length,
                    width=width,
                    height=height,
                    description=description,
                    items=list(group_items),
                )
            )

    logger.debug(
        f"Packed {sum(i.quantity for i in items)} units into {len(packages)} packages "
        f"across {len(groups)} dimension groups"
    )
    return packages
