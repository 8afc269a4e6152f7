#!/usr/bin/env python3
"""
Load or wipe sample data.

Usage:
    python seeder.py -i            # import from ./_data
    python seeder.py -i path/to/dir
    python seeder.py -d            # delete everything

Each of bootcamps.json, courses.json, users.json and reviews.json is optional.
Bootcamps without a `location` are geocoded from their `address` as the API
does; a `location` already present in the file is kept as is.
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List

from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from aggregates import update_average_cost, update_average_rating
from errors import ErrorResponse
from geocoder import Geocoder, to_location
from schemas import Bootcamp, Course, Review, User
from security import hash_password
from services import make_slug
from settings import get_settings

logger = logging.getLogger("seeder")

COLLECTIONS = ("bootcamp", "course", "user", "review")
DEFAULT_DATA_DIR = Path(__file__).parent / "_data"


def read_json(path: Path) -> List[Dict]:
    if not path.exists():
        logger.info("Skipping %s (not found)", path.name)
        return []
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _prepare(raw: Dict, model) -> Dict:
    data = {k: v for k, v in raw.items() if k != "_id"}
    doc = model(**data).model_dump(exclude_none=True)
    if "_id" in raw:
        doc["_id"] = database.to_obj_id(raw["_id"])
    return doc


def import_data(db: Database, data_dir: Path, geocoder: Geocoder) -> Dict[str, int]:
    users = []
    for raw in read_json(data_dir / "users.json"):
        raw = {**raw, "password": hash_password(raw["password"])}
        users.append(_prepare(raw, User))

    bootcamps = []
    for raw in read_json(data_dir / "bootcamps.json"):
        raw = dict(raw)
        address = raw.pop("address", None)
        if not raw.get("location") and address:
            raw["location"] = to_location(geocoder.geocode(address))
        raw["slug"] = make_slug(raw["name"])
        bootcamps.append(_prepare(raw, Bootcamp))

    courses = [_prepare(raw, Course) for raw in read_json(data_dir / "courses.json")]
    reviews = [_prepare(raw, Review) for raw in read_json(data_dir / "reviews.json")]

    counts = {}
    for name, docs in (("user", users), ("bootcamp", bootcamps), ("course", courses), ("review", reviews)):
        if docs:
            db[name].insert_many(docs)
        counts[name] = len(docs)

    for bootcamp in db["bootcamp"].find({}, {"_id": 1}):
        update_average_cost(db, str(bootcamp["_id"]))
        update_average_rating(db, str(bootcamp["_id"]))
    return counts


def delete_data(db: Database) -> None:
    for name in COLLECTIONS:
        db[name].delete_many({})


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Import or delete DevCamper sample data")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("-i", "--import", dest="data_dir", nargs="?", const=str(DEFAULT_DATA_DIR),
                       help="Import JSON files from DATA_DIR (default: ./_data)")
    group.add_argument("-d", "--delete", action="store_true", help="Delete all data")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(message)s")
    db = database.connect(settings)
    try:
        if args.delete:
            delete_data(db)
            logger.info("Data destroyed")
        else:
            database.ensure_indexes(db)
            geocoder = Geocoder(settings.geocoder_provider, settings.geocoder_api_key)
            counts = import_data(db, Path(args.data_dir), geocoder)
            logger.info("Data imported: %s", counts)
    except PyMongoError as e:
        logger.error("Seeding failed: %s", e)
        return 1
    except ErrorResponse as e:
        logger.error("Seeding failed: %s", e.message)
        return 1
    finally:
        database.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())
