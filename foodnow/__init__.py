"""
                FoodNow Order Service

Backend for a food delivery marketplace: order lifecycle with restaurant
auto-accept, rider hand-off, loyalty rewards and ratings, with hybrid
in-memory/SQL persistence and mock/real notifications.
"""

__version__ = "1.0.0"
