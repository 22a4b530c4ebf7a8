"""Turn a competitor page into structured pricing / promotion / menu data.

Structured markup (schema.org JSON-LD) is read first; when a page has none,
CSS-class heuristics and a promotion phrase regex are used instead.
"""
from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

_PRICE_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")
_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}
_PROMO_CLASS_RE = re.compile(r"promo|offer|deal|discount|sale|coupon|special", re.I)
_MENU_CLASS_RE = re.compile(r"menu[-_]?item|dish", re.I)
_PRODUCT_CLASS_RE = re.compile(r"product|price[-_]?item|pricing", re.I)
_NAME_CLASS_RE = re.compile(r"name|title", re.I)
_PRICE_CLASS_RE = re.compile(r"price|cost|amount", re.I)
_PROMO_TEXT_RE = re.compile(
    r"((?:\d+%\s*off|save|discount|sale|free|coupon|buy one get one)[^.\n]{10,100})",
    re.I,
)


@dataclass
class PriceItem:
    item: str
    price: str
    currency: Optional[str] = None
    category: Optional[str] = None


@dataclass
class PromotionItem:
    title: str
    description: str = ""
    discount: Optional[str] = None
    valid_until: Optional[str] = None


@dataclass
class MenuItem:
    name: str
    category: Optional[str] = None
    price: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ExtractedData:
    prices: List[PriceItem] = field(default_factory=list)
    promotions: List[PromotionItem] = field(default_factory=list)
    menu_items: List[MenuItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.prices or self.promotions or self.menu_items)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExtractedData":
        data = data or {}
        prices = [
            PriceItem(
                item=str(p.get("item") or ""),
                price=_price_text(p.get("price")),
                currency=p.get("currency"),
                category=p.get("category"),
            )
            for p in data.get("prices") or []
        ]
        promotions = [
            PromotionItem(
                title=str(p.get("title") or ""),
                description=str(p.get("description") or ""),
                discount=p.get("discount"),
                valid_until=p.get("valid_until") or p.get("validUntil"),
            )
            for p in data.get("promotions") or []
        ]
        menu_items = [
            MenuItem(
                name=str(m.get("name") or ""),
                category=m.get("category"),
                price=None if m.get("price") is None else _price_text(m.get("price")),
                description=m.get("description"),
            )
            for m in data.get("menu_items") or []
        ]
        return cls(prices=prices, promotions=promotions, menu_items=menu_items)


def _price_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def parse_price(value: Any) -> Optional[float]:
    """Numeric value of a price string such as "$1,299.00"; None if absent."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _PRICE_RE.search(str(value))
    if not match:
        return None
    return float(match.group(0).replace(",", ""))


def detect_currency(text: str) -> Optional[str]:
    for symbol, code in _CURRENCY_SYMBOLS.items():
        if symbol in text:
            return code
    match = re.search(r"\b(USD|EUR|GBP|CAD|AUD|JPY)\b", text)
    return match.group(1) if match else None


def _clean(text: str, limit: Optional[int] = None) -> str:
    text = re.sub(r"\s+", " ", text or "").strip()
    return text[:limit] if limit else text


def _iter_jsonld(soup: BeautifulSoup) -> Iterable[Dict[str, Any]]:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            payload = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        stack = [payload]
        while stack:
            node = stack.pop()
            if isinstance(node, list):
                stack.extend(node)
            elif isinstance(node, dict):
                yield node
                for key in ("@graph", "hasMenuSection", "hasMenuItem", "itemListElement", "item"):
                    if key in node:
                        stack.append(node[key])


def _offer_price(node: Dict[str, Any]) -> Optional[str]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if isinstance(offers, dict):
        price = offers.get("price") or offers.get("lowPrice")
        if price is not None:
            return _price_text(price)
    return None


def _node_types(node: Dict[str, Any]) -> List[str]:
    types = node.get("@type") or []
    return [types] if isinstance(types, str) else list(types)


def _extract_jsonld(soup: BeautifulSoup, data: ExtractedData) -> None:
    for node in _iter_jsonld(soup):
        types = _node_types(node)
        name = _clean(str(node.get("name") or ""))
        if not name:
            continue
        price = _offer_price(node)
        if "MenuItem" in types:
            data.menu_items.append(
                MenuItem(
                    name=name,
                    price=price,
                    description=_clean(str(node.get("description") or ""), 200) or None,
                )
            )
            if price:
                data.prices.append(PriceItem(item=name, price=price, category="menu"))
        elif "Product" in types and price:
            currency = None
            offers = node.get("offers")
            if isinstance(offers, dict):
                currency = offers.get("priceCurrency")
            data.prices.append(PriceItem(item=name, price=price, currency=currency))
        elif "Offer" in types and node.get("description"):
            data.promotions.append(
                PromotionItem(
                    title=name,
                    description=_clean(str(node["description"]), 200),
                    valid_until=node.get("validThrough"),
                )
            )


def _first_text(el: Tag, class_re: re.Pattern, fallback_tags: Iterable[str] = ()) -> str:
    found = el.find(class_=class_re)
    if found is None:
        for tag in fallback_tags:
            found = el.find(tag)
            if found is not None:
                break
    return _clean(found.get_text(" ")) if found is not None else ""


def _extract_html(soup: BeautifulSoup, data: ExtractedData) -> None:
    for el in soup.find_all(class_=_MENU_CLASS_RE):
        if el.find_parent(class_=_MENU_CLASS_RE) is not None:
            continue
        name = _first_text(el, _NAME_CLASS_RE, ("h3", "h4", "strong"))
        if not name:
            continue
        price_text = _first_text(el, _PRICE_CLASS_RE)
        data.menu_items.append(MenuItem(name=name, price=price_text or None))
        if price_text and parse_price(price_text) is not None:
            data.prices.append(
                PriceItem(item=name, price=price_text, currency=detect_currency(price_text), category="menu")
            )

    for el in soup.find_all(class_=_PRODUCT_CLASS_RE):
        if el.find_parent(class_=_PRODUCT_CLASS_RE) is not None:
            continue
        name = _first_text(el, _NAME_CLASS_RE, ("h2", "h3", "h4"))
        price_text = _first_text(el, _PRICE_CLASS_RE)
        if name and price_text and parse_price(price_text) is not None:
            data.prices.append(
                PriceItem(item=name, price=price_text, currency=detect_currency(price_text))
            )

    for el in soup.find_all(class_=_PROMO_CLASS_RE):
        if el.find_parent(class_=_PROMO_CLASS_RE) is not None:
            continue
        title = _first_text(el, _NAME_CLASS_RE, ("h1", "h2", "h3", "h4", "strong"))
        description = _clean(el.get_text(" "), 200)
        if not (title or description):
            continue
        discount = re.search(r"\d+%\s*off|\$\d+(?:\.\d{2})?\s*off", description, re.I)
        data.promotions.append(
            PromotionItem(
                title=title or description[:80],
                description=description,
                discount=discount.group(0) if discount else None,
            )
        )


def _extract_promotion_phrases(soup: BeautifulSoup, data: ExtractedData) -> None:
    text = soup.get_text("\n")
    for match in _PROMO_TEXT_RE.finditer(text):
        phrase = _clean(match.group(1), 100)
        data.promotions.append(PromotionItem(title=phrase, description=phrase))


def _dedupe(items: List[Any], key: str) -> List[Any]:
    seen = set()
    unique = []
    for item in items:
        k = getattr(item, key).lower()
        if not k or k in seen:
            continue
        seen.add(k)
        unique.append(item)
    return unique


def extract_data(html: str) -> ExtractedData:
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["style", "noscript"]):
        tag.decompose()

    data = ExtractedData()
    _extract_jsonld(soup, data)
    for tag in soup("script"):
        tag.decompose()
    _extract_html(soup, data)
    if not data.promotions:
        _extract_promotion_phrases(soup, data)

    data.prices = _dedupe(data.prices, "item")
    data.promotions = _dedupe(data.promotions, "title")
    data.menu_items = _dedupe(data.menu_items, "name")
    return data
