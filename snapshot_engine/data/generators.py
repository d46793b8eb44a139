"""
Synthetic Data Generator

Generates realistic raw commerce collections for development and demos:
- Catalog: products, variants, inventory levels, cost components
- Customers with lifetime counters
- Orders with line items, including cancellations and unattributed items
- Daily account-level ad insights

Records are SQLAlchemy model instances ready to be added to a session.
"""

import random
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from faker import Faker

from snapshot_engine.database.models import (
    AdInsight,
    Customer,
    InventoryLevel,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    VariantCost,
)
from snapshot_engine.engine.windows import utcnow


# =============================================================================
# CONFIGURATION
# =============================================================================

CATEGORIES = [
    ("Electronics", (40.0, 900.0), ["Headphones", "Speaker", "Charger", "Camera"]),
    ("Apparel", (15.0, 180.0), ["Shirt", "Hoodie", "Jacket", "Sneakers"]),
    ("Home", (10.0, 400.0), ["Lamp", "Mug", "Blanket", "Planter"]),
    ("Beauty", (8.0, 120.0), ["Serum", "Cleanser", "Lip Balm", "Mask"]),
    ("Outdoor", (20.0, 600.0), ["Tent", "Backpack", "Bottle", "Headlamp"]),
]

VENDORS = ["Northwind", "Acme Goods", "Blue Harbor", "Fernway", "Lumen & Co"]
VARIANT_OPTIONS = ["Small", "Medium", "Large", "Black", "White", "Sand"]

FINANCIAL_STATUSES = [
    ("paid", 0.82),
    ("partially_refunded", 0.04),
    ("refunded", 0.03),
    ("pending", 0.06),
    ("cancelled", 0.05),
]

CUSTOMER_PROFILES = {
    # profile: (weight, lifetime order range)
    "prospect": (0.20, (0, 0)),
    "one_time": (0.35, (1, 1)),
    "repeat": (0.30, (2, 6)),
    "loyal": (0.15, (7, 25)),
}


@dataclass
class CommerceDataset:
    """Raw collections for one organization"""
    organization_id: str
    products: List[Product] = field(default_factory=list)
    variants: List[ProductVariant] = field(default_factory=list)
    inventory_levels: List[InventoryLevel] = field(default_factory=list)
    variant_costs: List[VariantCost] = field(default_factory=list)
    customers: List[Customer] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)
    order_items: List[OrderItem] = field(default_factory=list)
    ad_insights: List[AdInsight] = field(default_factory=list)

    def all_records(self) -> list:
        """Every record, parents before children."""
        return [
            *self.products,
            *self.variants,
            *self.inventory_levels,
            *self.variant_costs,
            *self.customers,
            *self.orders,
            *self.order_items,
            *self.ad_insights,
        ]

    def counts(self) -> Dict[str, int]:
        return {
            "products": len(self.products),
            "variants": len(self.variants),
            "inventory_levels": len(self.inventory_levels),
            "variant_costs": len(self.variant_costs),
            "customers": len(self.customers),
            "orders": len(self.orders),
            "order_items": len(self.order_items),
            "ad_insights": len(self.ad_insights),
        }


# =============================================================================
# GENERATORS
# =============================================================================

class CatalogGenerator:
    """Generate products with variants, stock and cost components"""

    def __init__(self, organization_id: str, rng: random.Random, fake: Faker):
        self.organization_id = organization_id
        self.rng = rng
        self.fake = fake

    def generate(self, dataset: CommerceDataset, n_products: int) -> None:
        for index in range(n_products):
            category, (low, high), nouns = self.rng.choice(CATEGORIES)
            title = f"{self.fake.word().title()} {self.rng.choice(nouns)}"
            product = Product(
                id=str(uuid.uuid4()),
                organization_id=self.organization_id,
                external_id=f"gid://shop/Product/{100000 + index}",
                title=title,
                handle=title.lower().replace(" ", "-") if self.rng.random() > 0.1 else None,
                product_type=category if self.rng.random() > 0.05 else None,
                vendor=self.rng.choice(VENDORS) if self.rng.random() > 0.05 else None,
                featured_image=self.fake.image_url() if self.rng.random() > 0.2 else None,
            )
            dataset.products.append(product)

            base_price = round(self.rng.uniform(low, high), 2)
            n_variants = self.rng.choices([1, 2, 3, 4], weights=[0.55, 0.2, 0.15, 0.1])[0]
            options = self.rng.sample(VARIANT_OPTIONS, n_variants)

            for option in options:
                price = round(base_price * self.rng.uniform(0.9, 1.1), 2)
                variant = ProductVariant(
                    id=str(uuid.uuid4()),
                    organization_id=self.organization_id,
                    product_id=product.id,
                    sku=f"SKU-{self.fake.unique.random_number(digits=8, fix_len=True)}",
                    title=option if n_variants > 1 else None,
                    price=price,
                    compare_at_price=(
                        round(price * self.rng.uniform(0.5, 0.9), 2)
                        if self.rng.random() < 0.25 else None
                    ),
                    inventory_quantity=self.rng.randint(0, 150),
                )
                dataset.variants.append(variant)

                # Roughly one variant in five only has the legacy counter
                if self.rng.random() < 0.8:
                    dataset.inventory_levels.append(
                        InventoryLevel(
                            id=str(uuid.uuid4()),
                            organization_id=self.organization_id,
                            variant_id=variant.id,
                            available=self.rng.choices(
                                [0, self.rng.randint(1, 10), self.rng.randint(10, 400)],
                                weights=[0.1, 0.2, 0.7],
                            )[0],
                            incoming=self.rng.choice([0, 0, 0, 25, 50]),
                            committed=self.rng.randint(0, 8),
                        )
                    )

                if self.rng.random() < 0.5:
                    dataset.variant_costs.append(
                        VariantCost(
                            id=str(uuid.uuid4()),
                            organization_id=self.organization_id,
                            variant_id=variant.id,
                            cogs_per_unit=round(price * self.rng.uniform(0.25, 0.65), 2),
                            handling_per_unit=round(self.rng.uniform(0.5, 4.0), 2),
                            tax_percent=self.rng.choice([0.0, 5.0, 8.25, 20.0]),
                        )
                    )


class CustomerGenerator:
    """Generate customers with lifetime counters"""

    def __init__(self, organization_id: str, rng: random.Random, fake: Faker):
        self.organization_id = organization_id
        self.rng = rng
        self.fake = fake

    def generate(self, dataset: CommerceDataset, n_customers: int, now: datetime) -> None:
        profiles = list(CUSTOMER_PROFILES.keys())
        weights = [CUSTOMER_PROFILES[p][0] for p in profiles]

        for _ in range(n_customers):
            profile = self.rng.choices(profiles, weights=weights)[0]
            low, high = CUSTOMER_PROFILES[profile][1]
            orders_count = self.rng.randint(low, high)
            avg_value = self.rng.uniform(25, 220)
            created_at = now - timedelta(days=self.rng.randint(1, 900))

            anonymous = self.rng.random() < 0.05
            dataset.customers.append(
                Customer(
                    id=str(uuid.uuid4()),
                    organization_id=self.organization_id,
                    first_name=None if anonymous else self.fake.first_name(),
                    last_name=None if anonymous else self.fake.last_name(),
                    email=self.fake.unique.email() if self.rng.random() > 0.03 else None,
                    orders_count=orders_count,
                    total_spent=round(orders_count * avg_value, 2),
                    city=self.fake.city(),
                    country=self.fake.country_code(),
                    created_at=created_at,
                    updated_at=created_at + timedelta(days=self.rng.randint(0, 60)),
                )
            )


class OrderGenerator:
    """Generate orders and line items over a trailing period"""

    def __init__(self, organization_id: str, rng: random.Random):
        self.organization_id = organization_id
        self.rng = rng

    def generate(
        self,
        dataset: CommerceDataset,
        n_orders: int,
        now: datetime,
        history_days: int = 180,
    ) -> None:
        buyers = [c for c in dataset.customers if (c.orders_count or 0) > 0]
        # Part of the catalog never sells, so dead stock shows up
        sellable = self.rng.sample(dataset.variants, max(1, int(len(dataset.variants) * 0.7)))
        statuses = [s for s, _ in FINANCIAL_STATUSES]
        status_weights = [w for _, w in FINANCIAL_STATUSES]

        for _ in range(n_orders):
            created_at = now - timedelta(
                days=self.rng.triangular(0, history_days, 0),
                seconds=self.rng.randint(0, 86399),
            )
            order = Order(
                id=str(uuid.uuid4()),
                organization_id=self.organization_id,
                customer_id=self.rng.choice(buyers).id if buyers and self.rng.random() > 0.1 else None,
                created_at=created_at,
                financial_status=self.rng.choices(statuses, weights=status_weights)[0],
            )

            total = 0.0
            n_items = self.rng.choices([1, 2, 3, 4], weights=[0.6, 0.25, 0.1, 0.05])[0]
            for _ in range(n_items):
                quantity = self.rng.choices([1, 2, 3, 5], weights=[0.7, 0.2, 0.07, 0.03])[0]
                if sellable and self.rng.random() > 0.03:
                    variant = self.rng.choice(sellable)
                    variant_id, price = variant.id, variant.price
                else:
                    # Custom line item without a catalog variant
                    variant_id, price = None, round(self.rng.uniform(5, 60), 2)

                discount = round(price * quantity * self.rng.choice([0, 0, 0, 0.1, 0.2]), 2)
                dataset.order_items.append(
                    OrderItem(
                        id=str(uuid.uuid4()),
                        order_id=order.id,
                        variant_id=variant_id,
                        quantity=quantity,
                        price=price if self.rng.random() > 0.05 else None,
                        total_discount=discount,
                    )
                )
                total += price * quantity - discount

            order.total_price = round(max(total, 0.0), 2)
            dataset.orders.append(order)


class AdInsightGenerator:
    """Generate daily account-level and campaign-level ad totals"""

    def __init__(self, organization_id: str, rng: random.Random):
        self.organization_id = organization_id
        self.rng = rng

    def generate(self, dataset: CommerceDataset, days: int, today: date) -> None:
        for offset in range(days):
            day = today - timedelta(days=offset)
            impressions = self.rng.randint(2000, 40000)
            clicks = int(impressions * self.rng.uniform(0.005, 0.03))
            conversions = round(clicks * self.rng.uniform(0.01, 0.06), 2)

            dataset.ad_insights.append(
                AdInsight(
                    id=str(uuid.uuid4()),
                    organization_id=self.organization_id,
                    date=day,
                    entity_type="account",
                    impressions=impressions,
                    clicks=clicks,
                    conversions=conversions,
                )
            )
            dataset.ad_insights.append(
                AdInsight(
                    id=str(uuid.uuid4()),
                    organization_id=self.organization_id,
                    date=day,
                    entity_type="campaign",
                    impressions=impressions // 2,
                    clicks=clicks // 2,
                    conversions=round(conversions / 2, 2),
                )
            )


# =============================================================================
# MAIN GENERATOR
# =============================================================================

class CommerceDataGenerator:
    """
    Synthetic raw collections for one organization.

    Example:
        dataset = CommerceDataGenerator(seed=42).generate("org-demo")
        session.add_all(dataset.all_records())
    """

    def __init__(self, seed: Optional[int] = 42):
        self.rng = random.Random(seed)
        self.fake = Faker()
        if seed is not None:
            self.fake.seed_instance(seed)

    def generate(
        self,
        organization_id: str,
        n_products: int = 50,
        n_customers: int = 200,
        n_orders: int = 600,
        history_days: int = 180,
        ad_days: int = 90,
        now: Optional[datetime] = None,
    ) -> CommerceDataset:
        now = now or utcnow()
        dataset = CommerceDataset(organization_id=organization_id)

        CatalogGenerator(organization_id, self.rng, self.fake).generate(dataset, n_products)
        CustomerGenerator(organization_id, self.rng, self.fake).generate(dataset, n_customers, now)
        OrderGenerator(organization_id, self.rng).generate(dataset, n_orders, now, history_days)
        AdInsightGenerator(organization_id, self.rng).generate(dataset, ad_days, now.date())

        return dataset
