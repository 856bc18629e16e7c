"""
Products v2 migration: legacy product documents to the catalog list shape.

Run it against a database with:

    MONGODB_URI=mongodb://localhost:27017/catalog \\
    MIGRATION_DEFINITION=examples.products_v2:build_definition \\
    python -m shadowmigrate

The transformer flattens media, pricing and customization details into the
fields the catalog pages query, and derives tags and material specs. A
product with an unusable price is rejected and reported; everything else is
normalized with safe defaults.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from shadowmigrate import (
    IndexSpec,
    MigrationDefinition,
    PerformanceProbe,
    TargetSchema,
    ValidatingTransformer,
)
from shadowmigrate.migration import TransformationError

PLACEHOLDER_IMAGE = "/images/placeholder-product.jpg"
NEW_ARRIVAL_WINDOW = timedelta(days=30)
MAX_TAGS = 5

METAL_TYPES = {
    "gold": "14k-gold",
    "white-gold": "14k-white-gold",
    "rose-gold": "14k-rose-gold",
    "yellow-gold": "14k-gold",
    "platinum": "platinum",
    "silver": "silver",
    "sterling-silver": "silver",
    "titanium": "titanium",
}

CATEGORIES = {
    "ring": "rings",
    "rings": "rings",
    "necklace": "necklaces",
    "necklaces": "necklaces",
    "earring": "earrings",
    "earrings": "earrings",
    "bracelet": "bracelets",
    "bracelets": "bracelets",
}

class Pricing(BaseModel):
    basePrice: float
    currency: str


class Inventory(BaseModel):
    available: bool
    quantity: int


class Metal(BaseModel):
    type: str


class MaterialSpecs(BaseModel):
    metal: Metal


class CatalogProduct(BaseModel):
    """Fields the catalog pages rely on; everything else is optional."""

    id: str = Field(alias="_id")
    name: str
    description: str
    category: str
    subcategory: str
    slug: str
    primaryImage: str
    pricing: Pricing
    inventory: Inventory
    metadata: dict[str, Any]
    materialSpecs: MaterialSpecs


PRODUCT_SCHEMA = TargetSchema(CatalogProduct)

PRODUCT_INDEXES = (
    IndexSpec(keys=(("category", 1), ("metadata.featured", -1))),
    IndexSpec(keys=(("pricing.basePrice", 1),)),
    IndexSpec(keys=(("inventory.available", 1),)),
    IndexSpec(keys=(("slug", 1),), unique=True),
    IndexSpec(keys=(("materialSpecs.metal.type", 1),)),
    IndexSpec(keys=(("materialSpecs.stone.type", 1),), sparse=True),
    IndexSpec(keys=(("materialSpecs.stone.carat", 1),), sparse=True),
    IndexSpec(
        keys=(
            ("category", 1),
            ("materialSpecs.metal.type", 1),
            ("pricing.basePrice", 1),
        )
    ),
    IndexSpec(keys=(("metadata.featured", 1), ("inventory.available", 1))),
    IndexSpec(keys=(("category", 1), ("subcategory", 1), ("inventory.available", 1))),
    IndexSpec.text("name", "description", "metadata.tags", name="product_text_search"),
    IndexSpec(keys=(("metadata.bestseller", 1),)),
)

PRODUCT_PROBES = (
    PerformanceProbe(
        name="Catalog Load Time",
        filter={"inventory.available": True},
        sort=(("metadata.featured", -1), ("pricing.basePrice", 1)),
        limit=24,
        budget_ms=50,
        max_results=24,
        critical=True,
    ),
    PerformanceProbe(
        name="Category + Featured Query",
        filter={"category": "rings", "metadata.featured": True},
        limit=24,
        budget_ms=50,
    ),
    PerformanceProbe(
        name="Material Filter Query",
        filter={"materialSpecs.metal.type": "14k-gold"},
        limit=24,
        budget_ms=50,
    ),
    PerformanceProbe(
        name="Price Range Query",
        filter={"pricing.basePrice": {"$gte": 100, "$lte": 1000}},
        limit=24,
        budget_ms=50,
    ),
    PerformanceProbe(
        name="Combined Filter Query",
        filter={
            "category": "rings",
            "materialSpecs.metal.type": "14k-gold",
            "inventory.available": True,
        },
        limit=24,
        budget_ms=100,
    ),
)


def slugify(name: str | None) -> str:
    if not name:
        return "product"
    slug = re.sub(r"[^a-z0-9\s-]", "", name.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-") or "product"


def metal_type(raw: str | None) -> str:
    if not raw:
        return "silver"
    return METAL_TYPES.get(raw.lower(), "silver")


def stone_type(raw: str, lab_grown: bool) -> str:
    if raw == "other":
        return "moissanite"
    return ("lab-" if lab_grown else "") + raw.lower()


def carat(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 1.0
    # Anything outside a plausible range is a data-entry error.
    if not 0 < value <= 20:
        return 1.0
    return value


def _primary_image(product: dict[str, Any]) -> str:
    media = product.get("media") or {}
    if media.get("primary"):
        return str(media["primary"])
    images = product.get("images")
    if isinstance(images, list) and images:
        primary = next((image for image in images if image.get("isPrimary")), images[0])
        if primary.get("url"):
            return str(primary["url"])
    elif isinstance(images, dict) and images.get("primary"):
        return str(images["primary"])
    return PLACEHOLDER_IMAGE


def _material_specs(product: dict[str, Any]) -> dict[str, Any]:
    customization = product.get("customization") or {}
    materials = customization.get("materials") or [{}]
    material = materials[0]
    sustainability = material.get("sustainability") or {}
    specs: dict[str, Any] = {
        "metal": {
            "type": metal_type(material.get("type") or "silver"),
            "purity": material.get("purity")
            or ("14K" if material.get("type") == "gold" else "925"),
            "finish": material.get("finish") or "polished",
            "sustainability": {
                "recycled": bool(sustainability.get("recycled")),
                "ethicallySourced": bool(sustainability.get("ethicallySourced")),
            },
        }
    }

    gemstones = customization.get("gemstones") or []
    if gemstones and gemstones[0].get("type"):
        stone = gemstones[0]
        lab_grown = bool(stone.get("isLabGrown"))
        stone_sustainability = stone.get("sustainability") or {}
        specs["stone"] = {
            "type": stone_type(stone["type"], lab_grown),
            "carat": carat(stone.get("carat")),
            "cut": stone.get("cut") or "round",
            "clarity": stone.get("clarity") or "VS",
            "color": stone.get("color") or "colorless",
            "certification": (stone.get("certification") or {}).get("agency") or "none",
            "sustainability": {
                "labGrown": lab_grown,
                "conflictFree": stone_sustainability.get("conflictFree", True),
                "traceable": bool(stone_sustainability.get("traceable")),
            },
        }
    return specs


def _tags(product: dict[str, Any], specs: dict[str, Any]) -> list[str]:
    tags = [specs["metal"]["type"]]
    stone = specs.get("stone")
    if stone:
        tags.append(stone["type"])
        if stone["carat"] >= 1.0:
            tags.append("premium-stone")
    if product.get("category"):
        tags.append(product["category"])
    if isinstance(product.get("tags"), list):
        tags.extend(product["tags"])
    return list(dict.fromkeys(tags))[:MAX_TAGS]


def _is_new(created_at: Any, as_of: datetime) -> bool:
    if not isinstance(created_at, datetime):
        return False
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return created_at > as_of - NEW_ARRIVAL_WINDOW


def make_transform(as_of: datetime):
    """
    Build the record transform, fixing "now" so reruns give the same output.
    """

    def transform(product: dict[str, Any]) -> dict[str, Any]:
        source_id = product.get("_id")
        pricing = product.get("pricing") or {}
        raw_price = pricing.get("basePrice", product.get("basePrice", 0)) or 0
        try:
            base_price = float(raw_price)
        except (TypeError, ValueError) as e:
            raise TransformationError(
                source_id, f"basePrice {raw_price!r} is not a number", field="pricing.basePrice"
            ) from e
        if base_price < 0:
            raise TransformationError(
                source_id, f"basePrice {base_price} is negative", field="pricing.basePrice"
            )

        specs = _material_specs(product)
        inventory = product.get("inventory") or {}
        metadata = product.get("metadata") or {}
        analytics = product.get("analytics") or {}
        seo = product.get("seo") or {}

        document: dict[str, Any] = {
            "_id": str(source_id) if source_id is not None else product.get("id"),
            "name": product.get("name") or "",
            "description": product.get("description") or "",
            "category": CATEGORIES.get(str(product.get("category") or "").lower(), "jewelry"),
            "subcategory": product.get("subcategory") or "accessories",
            "slug": seo.get("slug") or slugify(product.get("name")),
            "primaryImage": _primary_image(product),
            "pricing": {
                "basePrice": base_price,
                "currency": pricing.get("currency") or product.get("currency") or "USD",
            },
            "inventory": {
                "available": inventory.get("available") is not False
                and product.get("status") == "active",
                "quantity": int(inventory.get("quantity") or 100),
            },
            "metadata": {
                "featured": bool(metadata.get("featured") or analytics.get("trending")),
                "bestseller": bool(
                    metadata.get("bestseller") or (analytics.get("purchases") or 0) > 10
                ),
                "newArrival": bool(
                    metadata.get("newArrival") or _is_new(product.get("createdAt"), as_of)
                ),
                "tags": _tags(product, specs),
            },
            "materialSpecs": specs,
        }
        profile = (product.get("creator") or {}).get("profile")
        if profile:
            document["creator"] = {"handle": profile.get("handle"), "name": profile.get("name")}
        return document

    return transform


def build_definition(as_of: datetime | None = None) -> MigrationDefinition:
    """Products v2 definition; ``as_of`` anchors the new-arrival window."""
    transform = make_transform(as_of or datetime.now(UTC))
    return MigrationDefinition(
        name="products-v2",
        version="2.0.0",
        transformer=ValidatingTransformer(transform, PRODUCT_SCHEMA),
        target_schema=PRODUCT_SCHEMA,
        indexes=PRODUCT_INDEXES,
        probes=PRODUCT_PROBES,
        description="Legacy products to the catalog list shape with material specs",
    )
