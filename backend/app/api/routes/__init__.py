# API Routes Module
from app.api.routes import (
    preferences,
    records,
    storage,
    subscriptions,
    webhooks,
)

__all__ = [
    "preferences",
    "records",
    "storage",
    "subscriptions",
    "webhooks",
]
