"""
Keyword-based item valuation.

A rough price hint for new listings: the first matching keyword group sets a
base price and the item's condition scales it. There is no model behind
this; it is only meant to pre-fill the value field.
"""
from models.item import ItemCondition

DEFAULT_BASE_VALUE = 10

# Checked in order; the first group with a keyword in the text wins
KEYWORD_BASE_VALUES: list[tuple[tuple[str, ...], int]] = [
    # Electronics
    (("iphone", "samsung"), 200),
    (("laptop", "computer"), 300),
    (("tv", "television"), 150),
    (("camera",), 100),
    (("headphones", "earbuds"), 50),
    # Furniture
    (("couch", "sofa"), 200),
    (("table", "desk"), 100),
    (("chair",), 50),
    # Clothing
    (("jacket", "coat"), 30),
    (("shoes", "sneakers"), 40),
    (("dress", "shirt"), 15),
    # Books / media
    (("book",), 5),
    (("game", "xbox", "playstation"), 30),
]

CONDITION_MULTIPLIERS: dict[ItemCondition, float] = {
    ItemCondition.NEW: 1.0,
    ItemCondition.LIKE_NEW: 0.8,
    ItemCondition.GOOD: 0.6,
    ItemCondition.FAIR: 0.4,
    ItemCondition.POOR: 0.2,
}


def base_value(text: str) -> int:
    words = text.lower()
    for keywords, value in KEYWORD_BASE_VALUES:
        if any(keyword in words for keyword in keywords):
            return value
    return DEFAULT_BASE_VALUE


def estimate_value(title: str, description: str, condition: ItemCondition) -> float:
    """Estimate an item's value in whole dollars."""
    multiplier = CONDITION_MULTIPLIERS.get(ItemCondition(condition), 0.6)
    return float(round(base_value(f"{title} {description}") * multiplier))
