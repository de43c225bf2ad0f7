# feedsync/services/profiles.py
"""
Per-storefront capabilities.

A single sync engine serves every storefront; what differs between them is
captured here: which collections exist and who belongs in them, which price
tier is published, and how brand names are normalized.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from feedsync.schemas.feed_item import CanonicalItem
from feedsync.services.collections import CollectionRule

PriceSelector = Callable[[CanonicalItem], Optional[str]]
BrandNormalizer = Callable[[str], str]


@dataclass(frozen=True)
class CatalogProfile:
    name: str
    collection_rules: Tuple[CollectionRule, ...]
    price_selector: PriceSelector
    brand_normalizer: BrandNormalizer

    def price_for(self, item: CanonicalItem) -> Optional[str]:
        return self.price_selector(item)

    def vendor_for(self, item: CanonicalItem) -> Optional[str]:
        return self.brand_normalizer(item.brand) if item.brand else None


# ----------------------------------------------------------------------
# Predicate helpers
# ----------------------------------------------------------------------

def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle.lower() in value.lower()


def _brand_is(*brands: str) -> Callable[[CanonicalItem], bool]:
    return lambda item: (item.brand or "").strip() in brands


def _year(item: CanonicalItem) -> Optional[int]:
    if not item.year or _contains(item.year, "current"):
        return None
    try:
        return int(item.year.strip())
    except ValueError:
        return None


def _is_vintage(item: CanonicalItem) -> bool:
    if _contains(item.title, "vintage"):
        return True
    year = _year(item)
    return year is not None and year < 2000


def _is_modern(item: CanonicalItem) -> bool:
    if _contains(item.year, "current"):
        return True
    year = _year(item)
    return year is not None and year >= 2000


def _is_watch_for(*styles: str) -> Callable[[CanonicalItem], bool]:
    return lambda item: _contains(item.category, "watches") and (item.style or "") in styles


def _under(limit: float, selector: PriceSelector) -> Callable[[CanonicalItem], bool]:
    def predicate(item: CanonicalItem) -> bool:
        price = selector(item)
        return bool(price) and float(price.replace(",", "")) < limit
    return predicate


def _model_contains(*needles: str) -> Callable[[CanonicalItem], bool]:
    return lambda item: any(_contains(item.model, n) for n in needles)


def _other_brand(brand_rules: Tuple[CollectionRule, ...]) -> Callable[[CanonicalItem], bool]:
    return lambda item: not any(rule.accepts(item) for rule in brand_rules)


def normalize_brand(brand: str) -> str:
    """Collapse whitespace and fix the few spellings the feed gets wrong."""
    cleaned = " ".join(brand.split())
    return _BRAND_ALIASES.get(cleaned.lower(), cleaned)


_BRAND_ALIASES: Dict[str, str] = {
    "fp journe": "F.P. Journe",
    "f.p. journe": "F.P. Journe",
    "patek": "Patek Philippe",
    "ap": "Audemars Piguet",
    "tag heuer": "TAG Heuer",
}


# ----------------------------------------------------------------------
# Built-in profiles
# ----------------------------------------------------------------------

def _keystone_price(item: CanonicalItem) -> Optional[str]:
    return item.price_keystone


def _default_price(item: CanonicalItem) -> Optional[str]:
    return item.price_ebay


def _keystone_rules() -> Tuple[CollectionRule, ...]:
    brands = (
        CollectionRule("Rolex", _brand_is("Rolex"), is_brand=True),
        CollectionRule("Patek Philippe", _brand_is("Patek Philippe"), is_brand=True),
        CollectionRule("Audemars Piguet", _brand_is("Audemars Piguet"), is_brand=True),
        CollectionRule("Vacheron Constantin", _brand_is("Vacheron Constantin"), is_brand=True),
        CollectionRule("Heuer", _brand_is("Heuer"), is_brand=True),
        CollectionRule("Omega", _brand_is("Omega"), is_brand=True),
    )
    rolex = brands[0].predicate
    return (
        CollectionRule("Watches Under $5,000", _under(5000, _keystone_price)),
        *brands,
        CollectionRule("Other Brand", _other_brand(brands)),
        CollectionRule(
            "Rolex Sport Watches",
            lambda item: rolex(item) and _model_contains(
                "Submariner", "Explorer", "GMT", "Daytona", "Milgauss", "Cosmograph", "Sea-Dweller"
            )(item),
        ),
        CollectionRule(
            "Sport Watches",
            lambda item: rolex(item) or _model_contains("Nautilus", "Royal Oak", "Speedmaster")(item),
        ),
        CollectionRule("Vintage Watches", _is_vintage),
        CollectionRule("Modern Watches", _is_modern),
        CollectionRule("Chronograph", lambda item: _contains(item.title, "chronograph")),
        CollectionRule("Men's", _is_watch_for("Gents", "Unisex")),
        CollectionRule("Women's", _is_watch_for("Ladies", "Unisex")),
        CollectionRule("Jewelry", lambda item: _contains(item.category, "jewelry")),
    )


def _gruenberg_rules() -> Tuple[CollectionRule, ...]:
    brands = (
        CollectionRule("Patek Philippe", _brand_is("Patek Philippe"), is_brand=True),
        CollectionRule("Rolex", _brand_is("Rolex"), is_brand=True),
        CollectionRule("Audemars Piguet", _brand_is("Audemars Piguet"), is_brand=True),
        CollectionRule("Piaget", _brand_is("Piaget"), is_brand=True),
        CollectionRule("Cartier", _brand_is("Cartier"), is_brand=True),
        CollectionRule("Hublot", _brand_is("Hublot"), is_brand=True),
        CollectionRule("Panerai", _brand_is("Panerai"), is_brand=True),
        CollectionRule("F.P. Journe", _brand_is("FP Journe", "F.P. Journe"), is_brand=True),
    )
    return (
        CollectionRule("Men's", _is_watch_for("Gents", "Unisex")),
        CollectionRule("Women's", _is_watch_for("Ladies", "Unisex")),
        CollectionRule("Under $5,000", _under(5000, _default_price)),
        CollectionRule("Vintage Watches", _is_vintage),
        CollectionRule("Diamond Watches", lambda item: _contains(item.title, "diamond") and _contains(item.category, "watches")),
        *brands,
        CollectionRule("Vintage Jewelry", lambda item: _contains(item.category, "jewelry") and _is_vintage(item)),
        CollectionRule("Other Brand", _other_brand(brands)),
    )


PROFILES: Dict[str, CatalogProfile] = {
    "keystone": CatalogProfile(
        name="keystone",
        collection_rules=_keystone_rules(),
        price_selector=_keystone_price,
        brand_normalizer=normalize_brand,
    ),
    "gruenberg": CatalogProfile(
        name="gruenberg",
        collection_rules=_gruenberg_rules(),
        price_selector=_default_price,
        brand_normalizer=normalize_brand,
    ),
}


def get_profile(name: str) -> CatalogProfile:
    try:
        return PROFILES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown catalog profile '{name}'. Available: {', '.join(sorted(PROFILES))}") from None
