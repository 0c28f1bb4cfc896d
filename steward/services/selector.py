"""Deterministic routing of spending questions to analytics functions.

Routing is an ordered list of keyword rules. The first rule with a keyword
present in the normalized query decides the function; vendor names come
first because they are the most precise signal.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from steward.models import FunctionCall, ReceiptCategory
from steward.services.timeframes import find_timeframe_phrase

GET_SPENDING_BY_VENDOR = "getSpendingByVendor"
GET_SPENDING_BY_CATEGORY = "getSpendingByCategory"
GET_SPENDING_BY_TIME = "getSpendingByTime"
GET_TOP_MERCHANTS = "getTopMerchants"

DEFAULT_FUNCTION = GET_SPENDING_BY_VENDOR
DEFAULT_TOP_LIMIT = 5

VENDOR_KEYWORDS = (
    # Coffee & food
    "starbucks", "dunkin", "peets", "chipotle", "mcdonald's", "mcdonalds", "chick-fil-a",
    "sweetgreen", "panera", "subway", "wendy's", "taco bell", "panda express",
    # Food delivery
    "doordash", "grubhub", "postmates", "uber eats", "instacart",
    # Rideshare
    "uber", "lyft",
    # Retail & shopping
    "amazon", "target", "walmart", "costco", "whole foods", "trader joe's", "trader joes",
    "best buy", "home depot", "lowes", "ikea", "cvs", "walgreens",
    # Streaming & subscriptions
    "netflix", "spotify", "hulu", "disney", "apple",
    # Gas stations
    "shell", "chevron", "exxon", "arco",
)

# Keyword -> canonical category, checked in order
CATEGORY_KEYWORDS: dict[str, ReceiptCategory] = {
    "coffee": ReceiptCategory.COFFEE,
    "cafe": ReceiptCategory.COFFEE,
    "groceries": ReceiptCategory.GROCERIES,
    "grocery": ReceiptCategory.GROCERIES,
    "supermarket": ReceiptCategory.GROCERIES,
    "gas": ReceiptCategory.GAS,
    "fuel": ReceiptCategory.GAS,
    "food": ReceiptCategory.FOOD_DINING,
    "dining": ReceiptCategory.FOOD_DINING,
    "restaurant": ReceiptCategory.FOOD_DINING,
    "restaurants": ReceiptCategory.FOOD_DINING,
    "lunch": ReceiptCategory.FOOD_DINING,
    "dinner": ReceiptCategory.FOOD_DINING,
    "shopping": ReceiptCategory.SHOPPING,
    "clothes": ReceiptCategory.SHOPPING,
    "transportation": ReceiptCategory.TRANSPORTATION,
    "rideshare": ReceiptCategory.TRANSPORTATION,
    "parking": ReceiptCategory.TRANSPORTATION,
    "entertainment": ReceiptCategory.ENTERTAINMENT,
    "movies": ReceiptCategory.ENTERTAINMENT,
    "utilities": ReceiptCategory.BILLS_UTILITIES,
    "bills": ReceiptCategory.BILLS_UTILITIES,
    "travel": ReceiptCategory.TRAVEL,
    "hotel": ReceiptCategory.TRAVEL,
    "hotels": ReceiptCategory.TRAVEL,
    "flights": ReceiptCategory.TRAVEL,
    "health": ReceiptCategory.HEALTH,
    "pharmacy": ReceiptCategory.HEALTH,
    "subscriptions": ReceiptCategory.SUBSCRIPTIONS,
    "subscription": ReceiptCategory.SUBSCRIPTIONS,
}

SUPERLATIVE_KEYWORDS = ("biggest", "largest", "top", "most", "highest")


@dataclass(frozen=True)
class RoutingRule:
    """Keyword class mapped to the function it routes to.

    A rule with a ``finder`` delegates matching to it instead of scanning
    ``keywords``; the time rule uses the timeframe parser so that every
    phrase it can resolve also routes to the time function.
    """

    name: str
    keywords: tuple[str, ...]
    function: str
    finder: Callable[[str], str | None] | None = None

    def matches(self, normalized_query: str) -> str | None:
        """Return the first keyword (or phrase) present in the query, or None."""
        if self.finder is not None:
            return self.finder(normalized_query)
        for keyword in self.keywords:
            if _contains_word(normalized_query, keyword):
                return keyword
        return None


ROUTING_RULES: tuple[RoutingRule, ...] = (
    RoutingRule("vendor", VENDOR_KEYWORDS, GET_SPENDING_BY_VENDOR),
    RoutingRule("category", tuple(CATEGORY_KEYWORDS), GET_SPENDING_BY_CATEGORY),
    RoutingRule("time", (), GET_SPENDING_BY_TIME, finder=find_timeframe_phrase),
    RoutingRule("superlative", SUPERLATIVE_KEYWORDS, GET_TOP_MERCHANTS),
)


def normalize_query(query: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join(query.lower().split())


def _contains_word(text: str, keyword: str) -> bool:
    # Word boundaries that tolerate punctuation inside keywords ("chick-fil-a")
    return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", text) is not None


def select_function(query: str) -> str:
    """Map a query to the name of the analytics function to invoke."""
    normalized = normalize_query(query)
    for rule in ROUTING_RULES:
        if rule.matches(normalized):
            return rule.function
    return DEFAULT_FUNCTION


def extract_arguments(function_name: str, query: str) -> dict[str, Any]:
    """Pull the arguments for function_name out of the query text."""
    normalized = normalize_query(query)
    arguments: dict[str, Any] = {}

    timeframe = find_timeframe_phrase(normalized)
    if timeframe:
        arguments["timeframe"] = timeframe

    if function_name == GET_SPENDING_BY_VENDOR:
        vendor = ROUTING_RULES[0].matches(normalized)
        if vendor:
            arguments["vendor"] = vendor
    elif function_name == GET_SPENDING_BY_CATEGORY:
        keyword = ROUTING_RULES[1].matches(normalized)
        if keyword:
            arguments["category"] = CATEGORY_KEYWORDS[keyword].value
    elif function_name == GET_TOP_MERCHANTS:
        arguments["limit"] = DEFAULT_TOP_LIMIT

    return arguments


def build_function_call(query: str) -> FunctionCall:
    """Select a function and synthesize its call from the query."""
    name = select_function(query)
    return FunctionCall(name=name, arguments=extract_arguments(name, query))
