"""
Ratings for restaurants and riders.
"""

from foodnow.services.ratings.service import (
    CATEGORIES,
    RatingService,
    category_averages,
    rating_trend,
)

__all__ = [
    "RatingService",
    "CATEGORIES",
    "category_averages",
    "rating_trend",
]
