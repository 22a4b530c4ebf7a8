"""Compare a fresh extraction with the previous snapshot and draft alerts.

Everything here is pure: the worker persists the drafts.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from loguru import logger

from src.crawler.extractor import (
    ExtractedData,
    MenuItem,
    PriceItem,
    PromotionItem,
    parse_price,
)
from src.models.alert import AlertType


@dataclass
class PriceUpdate:
    item: str
    old_price: str
    new_price: str
    reduced: bool


@dataclass
class PriceChangeDetails:
    alert_type: ClassVar[AlertType] = AlertType.price_change

    updated: List[PriceUpdate] = field(default_factory=list)
    added: List[PriceItem] = field(default_factory=list)
    removed: List[PriceItem] = field(default_factory=list)

    @property
    def reductions(self) -> int:
        return sum(1 for u in self.updated if u.reduced)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.alert_type.value, **asdict(self)}


@dataclass
class NewPromotionDetails:
    alert_type: ClassVar[AlertType] = AlertType.new_promotion

    promotion: PromotionItem

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.alert_type.value, **asdict(self)}


@dataclass
class MenuChangeDetails:
    alert_type: ClassVar[AlertType] = AlertType.menu_change

    added: List[MenuItem] = field(default_factory=list)
    removed: List[MenuItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.alert_type.value, **asdict(self)}


AlertDetails = Union[PriceChangeDetails, NewPromotionDetails, MenuChangeDetails]


@dataclass
class AlertDraft:
    message: str
    details: AlertDetails

    @property
    def alert_type(self) -> AlertType:
        return self.details.alert_type

    @property
    def dedup_key(self) -> str:
        if isinstance(self.details, NewPromotionDetails):
            return self.details.promotion.title.lower()
        return ""


def details_from_dict(payload: Dict[str, Any]) -> AlertDetails:
    """Rebuild the typed details stored on an Alert row."""
    kind = payload.get("type")
    if kind == AlertType.price_change.value:
        return PriceChangeDetails(
            updated=[PriceUpdate(**u) for u in payload.get("updated", [])],
            added=[PriceItem(**p) for p in payload.get("added", [])],
            removed=[PriceItem(**p) for p in payload.get("removed", [])],
        )
    if kind == AlertType.new_promotion.value:
        return NewPromotionDetails(promotion=PromotionItem(**payload["promotion"]))
    if kind == AlertType.menu_change.value:
        return MenuChangeDetails(
            added=[MenuItem(**m) for m in payload.get("added", [])],
            removed=[MenuItem(**m) for m in payload.get("removed", [])],
        )
    raise ValueError(f"Unknown alert details type: {kind!r}")


def _key(name: str) -> str:
    return (name or "").strip().lower()


def _prices_differ(old: str, new: str) -> bool:
    old_value, new_value = parse_price(old), parse_price(new)
    if old_value is not None and new_value is not None:
        return old_value != new_value
    return old.strip() != new.strip()


def diff_prices(previous: List[PriceItem], current: List[PriceItem]) -> PriceChangeDetails:
    before = {_key(p.item): p for p in previous if _key(p.item)}
    after = {_key(p.item): p for p in current if _key(p.item)}

    details = PriceChangeDetails()
    for key in sorted(after):
        item = after[key]
        old = before.get(key)
        if old is None:
            details.added.append(item)
        elif _prices_differ(old.price, item.price):
            old_value = parse_price(old.price)
            new_value = parse_price(item.price)
            reduced = (
                old_value is not None and new_value is not None and new_value < old_value
            )
            details.updated.append(
                PriceUpdate(item=item.item, old_price=old.price, new_price=item.price, reduced=reduced)
            )
    details.removed = [before[key] for key in sorted(before) if key not in after]
    return details


def diff_promotions(
    previous: List[PromotionItem], current: List[PromotionItem]
) -> Tuple[List[PromotionItem], List[PromotionItem]]:
    before = {_key(p.title) for p in previous}
    after = {_key(p.title) for p in current}
    added = sorted((p for p in current if _key(p.title) not in before), key=lambda p: _key(p.title))
    ended = sorted((p for p in previous if _key(p.title) not in after), key=lambda p: _key(p.title))
    return added, ended


def diff_menu(previous: List[MenuItem], current: List[MenuItem]) -> MenuChangeDetails:
    before = {_key(m.name): m for m in previous if _key(m.name)}
    after = {_key(m.name): m for m in current if _key(m.name)}
    return MenuChangeDetails(
        added=[after[k] for k in sorted(after) if k not in before],
        removed=[before[k] for k in sorted(before) if k not in after],
    )


def _plural(count: int, word: str, plural: Optional[str] = None) -> str:
    return f"{count} {word if count == 1 else (plural or word + 's')}"


def price_message(details: PriceChangeDetails) -> str:
    parts = []
    if details.updated:
        text = f"{_plural(len(details.updated), 'price')} updated"
        if details.reductions:
            text += f" ({_plural(details.reductions, 'price reduction')})"
        parts.append(text + ":")
        for u in details.updated:
            arrow = "down" if u.reduced else "up"
            parts.append(f"{u.item} {u.old_price} -> {u.new_price} ({arrow}).")
    if details.added:
        parts.append(f"{_plural(len(details.added), 'new price')} added.")
    if details.removed:
        parts.append(f"{_plural(len(details.removed), 'price')} removed.")
    return " ".join(parts) or "Prices updated"


def promotion_message(promotion: PromotionItem) -> str:
    text = f"New promotion: {promotion.title}"
    if promotion.discount:
        text += f" ({promotion.discount})"
    if promotion.valid_until:
        text += f", valid until {promotion.valid_until}"
    return text


def menu_message(details: MenuChangeDetails) -> str:
    parts = []
    if details.added:
        names = ", ".join(m.name for m in details.added[:3])
        parts.append(f"{_plural(len(details.added), 'new menu item')}: {names}.")
    if details.removed:
        parts.append(f"{_plural(len(details.removed), 'menu item')} removed.")
    return " ".join(parts) or "Menu updated"


def detect_changes(previous, new_data: ExtractedData, new_hash: str) -> List[AlertDraft]:
    """Draft alerts for the change from ``previous`` (a PriceSnapshot or None) to ``new_data``.

    Returns alerts in a fixed order: price_change, new_promotion (one per
    promotion, by title), menu_change.
    """
    if previous is None:
        return []
    if previous.snapshot_hash == new_hash:
        return []

    old_data = ExtractedData.from_dict(previous.extracted_data)
    drafts: List[AlertDraft] = []

    prices = diff_prices(old_data.prices, new_data.prices)
    if prices.updated or prices.added:
        drafts.append(AlertDraft(message=price_message(prices), details=prices))

    added_promotions, ended_promotions = diff_promotions(old_data.promotions, new_data.promotions)
    for promotion in added_promotions:
        drafts.append(
            AlertDraft(
                message=promotion_message(promotion),
                details=NewPromotionDetails(promotion=promotion),
            )
        )
    if ended_promotions:
        logger.debug(f"{len(ended_promotions)} promotions ended: {[p.title for p in ended_promotions]}")

    menu = diff_menu(old_data.menu_items, new_data.menu_items)
    if menu.added or menu.removed:
        drafts.append(AlertDraft(message=menu_message(menu), details=menu))

    return drafts
