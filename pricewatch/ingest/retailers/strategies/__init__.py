"""Retailer strategy registry."""

from __future__ import annotations

from typing import Optional

from pricewatch.ingest.retailers.strategies.base import RetailerStrategy, SiteExtraction
from pricewatch.ingest.retailers.strategies.amazon_strategy import AmazonStrategy
from pricewatch.ingest.retailers.strategies.walmart_strategy import WalmartStrategy
from pricewatch.ingest.retailers.strategies.bestbuy_strategy import BestBuyStrategy
from pricewatch.ingest.retailers.strategies.target_strategy import TargetStrategy
from pricewatch.ingest.retailers.strategies.ebay_strategy import EbayStrategy
from pricewatch.ingest.retailers.strategies.newegg_strategy import NeweggStrategy
from pricewatch.ingest.retailers.strategies.homedepot_strategy import HomeDepotStrategy
from pricewatch.ingest.retailers.strategies.costco_strategy import CostcoStrategy
from pricewatch.ingest.retailers.strategies.aliexpress_strategy import AliExpressStrategy
from pricewatch.ingest.retailers.strategies.magento_strategy import MagentoStrategy


# Order matters: the first match wins, and Magento matches by URL shape so it stays last.
STRATEGIES: list[RetailerStrategy] = [
    AmazonStrategy(),
    WalmartStrategy(),
    BestBuyStrategy(),
    TargetStrategy(),
    EbayStrategy(),
    NeweggStrategy(),
    HomeDepotStrategy(),
    CostcoStrategy(),
    AliExpressStrategy(),
    MagentoStrategy(),
]


def get_strategy_for_url(url: str) -> Optional[RetailerStrategy]:
    """Return the first strategy handling the URL, or None."""
    if not url:
        return None
    for strategy in STRATEGIES:
        if strategy.matches(url):
            return strategy
    return None


def requires_browser(url: str) -> bool:
    """Whether the URL's retailer only renders prices client-side."""
    strategy = get_strategy_for_url(url)
    return bool(strategy and strategy.requires_browser)


__all__ = [
    "RetailerStrategy",
    "SiteExtraction",
    "STRATEGIES",
    "get_strategy_for_url",
    "requires_browser",
]
