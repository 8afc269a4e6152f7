"""
Derived bootcamp aggregates.

`averageCost` comes from the bootcamp's courses and `averageRating` from its
reviews. Both are advisory: a failed recomputation is logged and the write that
triggered it still succeeds.
"""
import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import to_obj_id
from errors import ErrorResponse

logger = logging.getLogger(__name__)


def round_cost(mean: float) -> int:
    """Round a mean tuition up to the next multiple of 10."""
    return int(math.ceil(mean / 10) * 10)


def round_rating(mean: float) -> float:
    return float(Decimal(str(mean)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _mean(db: Database, collection_name: str, bootcamp_id: str, field: str) -> Optional[float]:
    rows = list(db[collection_name].aggregate([
        {"$match": {"bootcamp": bootcamp_id}},
        {"$group": {"_id": "$bootcamp", "avg": {"$avg": f"${field}"}}},
    ]))
    if not rows or rows[0].get("avg") is None:
        return None
    return rows[0]["avg"]


def _store(db: Database, bootcamp_id: str, field: str, value) -> None:
    if value is None:
        update = {"$unset": {field: ""}}
    else:
        update = {"$set": {field: value}}
    db["bootcamp"].update_one({"_id": to_obj_id(bootcamp_id)}, update)


def update_average_cost(db: Database, bootcamp_id: str) -> Optional[int]:
    try:
        mean = _mean(db, "course", bootcamp_id, "tuition")
        value = round_cost(mean) if mean is not None else None
        _store(db, bootcamp_id, "averageCost", value)
    except (PyMongoError, ErrorResponse):
        logger.exception("Could not recompute averageCost for bootcamp %s", bootcamp_id)
        return None
    logger.debug("Bootcamp %s averageCost -> %s", bootcamp_id, value)
    return value


def update_average_rating(db: Database, bootcamp_id: str) -> Optional[float]:
    try:
        mean = _mean(db, "review", bootcamp_id, "rating")
        value = round_rating(mean) if mean is not None else None
        _store(db, bootcamp_id, "averageRating", value)
    except (PyMongoError, ErrorResponse):
        logger.exception("Could not recompute averageRating for bootcamp %s", bootcamp_id)
        return None
    logger.debug("Bootcamp %s averageRating -> %s", bootcamp_id, value)
    return value
