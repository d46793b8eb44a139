"""
Data Generation Module
"""
from .generators import (
    AdInsightGenerator,
    CatalogGenerator,
    CommerceDataGenerator,
    CommerceDataset,
    CustomerGenerator,
    OrderGenerator,
)

__all__ = [
    "AdInsightGenerator",
    "CatalogGenerator",
    "CommerceDataGenerator",
    "CommerceDataset",
    "CustomerGenerator",
    "OrderGenerator",
]
