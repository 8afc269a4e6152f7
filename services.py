"""
Write-path use-cases for bootcamps, courses and reviews.

Each use-case runs its side effects explicitly: slug and geocoding before a
bootcamp is stored, aggregate recomputation after a course or review changes,
and the cascade before a bootcamp is removed.
"""
import logging
import math
import os
import shutil
from typing import IO, Any, Dict, List, Tuple

from fastapi import UploadFile
from pymongo import ReturnDocument
from pymongo.database import Database
from slugify import slugify

from aggregates import update_average_cost, update_average_rating
from database import create_document, find_by_id, to_obj_id
from errors import ErrorResponse
from geocoder import Geocoder, to_location
from schemas import Bootcamp, Course, Review
from settings import Settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3963


def make_slug(name: str) -> str:
    return slugify(name, lowercase=True)


def get_or_404(db: Database, collection_name: str, doc_id: str, message: str) -> Dict:
    doc = find_by_id(db, collection_name, doc_id)
    if not doc:
        raise ErrorResponse(message, 404)
    return doc


def ensure_owner(doc: Dict, user: Dict, message: str) -> None:
    if doc.get("user") != user["id"] and user.get("role") != "admin":
        raise ErrorResponse(message, 403)


def _apply_update(db: Database, collection_name: str, doc: Dict, changes: Dict, model) -> Dict:
    # validate the merged document the same way an insert would be validated
    model(**{**doc, **changes})
    if not changes:
        return doc
    return db[collection_name].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


# ---------------------------------------------------------------------------
# Bootcamps
# ---------------------------------------------------------------------------

def create_bootcamp(db: Database, geocoder: Geocoder, user: Dict, payload: Dict[str, Any]) -> Dict:
    published = db["bootcamp"].find_one({"user": user["id"]})
    if published and user.get("role") != "admin":
        raise ErrorResponse(f"The user with ID {user['id']} has already published a bootcamp", 400)

    data = dict(payload)
    address = data.pop("address")
    bootcamp = Bootcamp(
        **data,
        slug=make_slug(data["name"]),
        location=to_location(geocoder.geocode(address)),
        user=user["id"],
    )
    doc = create_document(db, "bootcamp", bootcamp)
    logger.info("Bootcamp %s created by %s", doc["_id"], user["id"])
    return doc


def update_bootcamp(db: Database, geocoder: Geocoder, bootcamp_id: str, user: Dict, changes: Dict[str, Any]) -> Dict:
    bootcamp = get_or_404(db, "bootcamp", bootcamp_id, f"Bootcamp not found with id of {bootcamp_id}")
    ensure_owner(bootcamp, user, f"User with ID {user['id']} is not authorized to update this bootcamp")

    changes = dict(changes)
    if "name" in changes:
        changes["slug"] = make_slug(changes["name"])
    if "address" in changes:
        changes["location"] = to_location(geocoder.geocode(changes.pop("address")))
    return _apply_update(db, "bootcamp", bootcamp, changes, Bootcamp)


def cascade_delete_bootcamp(db: Database, bootcamp: Dict) -> None:
    """Remove a bootcamp's courses, then its reviews, then the bootcamp.

    The steps run one after another without a transaction. If one fails the
    later steps do not run and the error propagates to the caller.
    """
    bootcamp_id = str(bootcamp["_id"])
    logger.info("Courses being deleted from bootcamp %s", bootcamp_id)
    db["course"].delete_many({"bootcamp": bootcamp_id})
    logger.info("Reviews being deleted from bootcamp %s", bootcamp_id)
    db["review"].delete_many({"bootcamp": bootcamp_id})
    db["bootcamp"].delete_one({"_id": bootcamp["_id"]})


def delete_bootcamp(db: Database, bootcamp_id: str, user: Dict) -> None:
    bootcamp = get_or_404(db, "bootcamp", bootcamp_id, f"Bootcamp not found with id of {bootcamp_id}")
    ensure_owner(bootcamp, user, f"User with ID {user['id']} is not authorized to delete this bootcamp")
    cascade_delete_bootcamp(db, bootcamp)


def bootcamps_in_radius(db: Database, geocoder: Geocoder, zipcode: str, distance: float) -> Tuple[List[Dict], float]:
    geo = geocoder.geocode(zipcode)
    radius = distance / EARTH_RADIUS_MILES
    bootcamps = list(db["bootcamp"].find({
        "location": {"$geoWithin": {"$centerSphere": [[geo["longitude"], geo["latitude"]], radius]}},
    }))
    return bootcamps, radius


def move_file(src: IO[bytes], destination: str) -> None:
    try:
        os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
        with open(destination, "wb") as out:
            shutil.copyfileobj(src, out)
    except OSError:
        logger.exception("Problem moving upload to %s", destination)
        raise ErrorResponse("Problem with file upload", 500)


def upload_bootcamp_photo(db: Database, settings: Settings, bootcamp_id: str, user: Dict, upload: UploadFile) -> str:
    bootcamp = get_or_404(db, "bootcamp", bootcamp_id, f"Bootcamp not found with id of {bootcamp_id}")
    ensure_owner(bootcamp, user, f"User with ID {user['id']} is not authorized to update this bootcamp")

    if upload is None or not upload.filename:
        raise ErrorResponse("Please upload a file", 400)
    if not (upload.content_type or "").startswith("image"):
        raise ErrorResponse("Please upload an image file", 400)

    size = upload.size
    if size is None:
        upload.file.seek(0, os.SEEK_END)
        size = upload.file.tell()
        upload.file.seek(0)
    if size > settings.max_file_upload:
        max_mb = math.ceil(settings.max_file_upload / (1024 * 1024) * 10) / 10
        raise ErrorResponse(f"Please upload an image less than {max_mb:g} MB", 400)

    filename = f"photo_{bootcamp['_id']}{os.path.splitext(upload.filename)[1]}"
    move_file(upload.file, os.path.join(settings.file_upload_path, filename))
    db["bootcamp"].update_one({"_id": bootcamp["_id"]}, {"$set": {"photo": filename}})
    return filename


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------

def add_course(db: Database, bootcamp_id: str, user: Dict, payload: Dict[str, Any]) -> Dict:
    bootcamp = get_or_404(db, "bootcamp", bootcamp_id, f"No bootcamp with the id of {bootcamp_id}")
    ensure_owner(
        bootcamp, user,
        f"User with ID {user['id']} is not authorized to add a course to bootcamp with ID {bootcamp_id}",
    )
    course = Course(**payload, bootcamp=str(bootcamp["_id"]), user=user["id"])
    doc = create_document(db, "course", course)
    update_average_cost(db, doc["bootcamp"])
    return doc


def update_course(db: Database, course_id: str, user: Dict, changes: Dict[str, Any]) -> Dict:
    course = get_or_404(db, "course", course_id, f"No course with the id of {course_id}")
    ensure_owner(course, user, f"User with ID {user['id']} is not authorized to update course with ID {course_id}")
    updated = _apply_update(db, "course", course, changes, Course)
    if "tuition" in changes:
        update_average_cost(db, updated["bootcamp"])
    return updated


def delete_course(db: Database, course_id: str, user: Dict) -> None:
    course = get_or_404(db, "course", course_id, f"No course with the id of {course_id}")
    ensure_owner(course, user, f"User with ID {user['id']} is not authorized to delete course with ID {course_id}")
    db["course"].delete_one({"_id": course["_id"]})
    update_average_cost(db, course["bootcamp"])


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------

def add_review(db: Database, bootcamp_id: str, user: Dict, payload: Dict[str, Any]) -> Dict:
    bootcamp = get_or_404(db, "bootcamp", bootcamp_id, f"No bootcamp found with the id of {bootcamp_id}")
    review = Review(**payload, bootcamp=str(bootcamp["_id"]), user=user["id"])
    # a second review for the same (bootcamp, user) raises DuplicateKeyError
    doc = create_document(db, "review", review)
    update_average_rating(db, doc["bootcamp"])
    return doc


def update_review(db: Database, review_id: str, user: Dict, changes: Dict[str, Any]) -> Dict:
    review = get_or_404(db, "review", review_id, f"No review found with the id of {review_id}")
    ensure_owner(review, user, "Not authorized to update this review")
    updated = _apply_update(db, "review", review, changes, Review)
    if "rating" in changes:
        update_average_rating(db, updated["bootcamp"])
    return updated


def delete_review(db: Database, review_id: str, user: Dict) -> None:
    review = get_or_404(db, "review", review_id, f"No review found with the id of {review_id}")
    ensure_owner(review, user, "Not authorized to delete this review")
    db["review"].delete_one({"_id": review["_id"]})
    update_average_rating(db, review["bootcamp"])


def children_of(db: Database, collection_name: str, bootcamp_id: str) -> List[Dict]:
    # malformed ids are a 404 like everywhere else
    to_obj_id(bootcamp_id)
    return list(db[collection_name].find({"bootcamp": bootcamp_id}))
