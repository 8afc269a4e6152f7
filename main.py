import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.database import Database
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

import database
from database import create_document, find_by_id, get_db, sanitize, to_obj_id
from errors import ErrorResponse, register_error_handlers
from geocoder import Geocoder, get_geocoder
from mailer import Mailer, get_mailer
from query import Populate, advanced_results, populate_documents
from schemas import Bootcamp as BootcampSchema, Course as CourseSchema, Review as ReviewSchema, Role, Skill, User as UserSchema
from security import (
    authorize,
    generate_confirm_token,
    generate_reset_token,
    hash_confirm_token,
    hash_password,
    hash_token,
    logout_response,
    protect,
    token_response,
    verify_password,
)
from settings import Settings, get_settings
import services

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("devcamper")

API = "/api/v1"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}

# One budget per client address, shared by every route
limiter = Limiter(key_func=get_remote_address, application_limits=[settings.rate_limit], headers_enabled=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = database.connect(settings)
    database.ensure_indexes(db)
    yield
    database.disconnect()


# App and CORS
app = FastAPI(title="DevCamper API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
register_error_handlers(app)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s - %.1fms", request.method, request.url.path, response.status_code, elapsed)
    return response


def ok(message: str, data: Any = None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "status": True, "message": message}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


# Request Models
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: str = Field("user", pattern="^(user|publisher)$")

class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

class UpdateDetailsRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None

class UpdatePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = Field(None, min_length=6)

class ForgotPasswordRequest(BaseModel):
    email: str

class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6)

class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "user"

class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[Role] = None

class CreateBootcampRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=75)
    description: str = Field(..., min_length=1, max_length=500)
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: str = Field(..., min_length=1)
    careers: List[str]
    housing: bool = False
    jobAssistance: bool = False
    jobGuarantee: bool = False
    acceptGi: bool = False

class UpdateBootcampRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=75)
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, min_length=1)
    careers: Optional[List[str]] = None
    housing: Optional[bool] = None
    jobAssistance: Optional[bool] = None
    jobGuarantee: Optional[bool] = None
    acceptGi: Optional[bool] = None

class CreateCourseRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    weeks: int = Field(..., ge=1)
    tuition: float = Field(..., ge=0)
    minimumSkill: Skill
    scholarshipAvailable: bool = False

class UpdateCourseRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    weeks: Optional[int] = Field(None, ge=1)
    tuition: Optional[float] = Field(None, ge=0)
    minimumSkill: Optional[Skill] = None
    scholarshipAvailable: Optional[bool] = None

class CreateReviewRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    text: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=10)

class UpdateReviewRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    text: Optional[str] = Field(None, min_length=1)
    rating: Optional[int] = Field(None, ge=1, le=10)


def _changes(payload: BaseModel) -> Dict[str, Any]:
    return {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}


# Auth Routes
@app.post(f"{API}/auth/register")
def register(
    payload: RegisterRequest,
    request: Request,
    db: Database = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    confirm_token, confirm_hash = generate_confirm_token()
    user = UserSchema(
        name=payload.name,
        email=payload.email,
        role=payload.role,
        password=hash_password(payload.password),
        confirmEmailToken=confirm_hash,
    )
    doc = create_document(db, "user", user)
    user_id = str(doc["_id"])

    confirm_url = f"{request.base_url}api/v1/auth/confirmEmail?token={confirm_token}"
    text = (
        f"Dear {payload.name},\n\n"
        f"Thank you for registering. Please confirm your email address by clicking the link below:\n\n"
        f"{confirm_url}\n\n"
        f"If you did not request this registration, please ignore this email.\n"
    )
    html = (
        f"<p>Dear {payload.name},</p>"
        f"<p>Thank you for registering. Please confirm your email address by clicking the link below:</p>"
        f'<a href="{confirm_url}">{confirm_url}</a>'
        f"<p>If you did not request this registration, please ignore this email.</p>"
    )
    try:
        mailer.send(to=payload.email, subject="Email Confirmation Required", text=text, html=html)
    except ErrorResponse:
        # no confirmation email means no account
        db["user"].delete_one({"_id": doc["_id"]})
        raise ErrorResponse("There was an error sending the email. Please try again later.", 500)

    return token_response(
        user_id,
        "Registration successful. Please check your email to confirm your account.",
        settings,
    )

@app.post(f"{API}/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    if not payload.email or not payload.password:
        raise ErrorResponse("Please provide an email and password", 400)
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise ErrorResponse("Invalid credentials", 401)
    return token_response(str(user["_id"]), "Login successful", settings)

@app.get(f"{API}/auth/logout")
def logout(settings: Settings = Depends(get_settings)):
    return logout_response(settings)

@app.get(f"{API}/auth/currentUser")
def current_user(user=Depends(protect)):
    return ok("Current authenticated user retrieved successfully", user)

@app.put(f"{API}/auth/updateDetails")
def update_details(payload: UpdateDetailsRequest, user=Depends(protect), db: Database = Depends(get_db)):
    if not payload.name or not payload.email:
        raise ErrorResponse("Please provide both name and email", 400)
    updated = db["user"].find_one_and_update(
        {"_id": to_obj_id(user["id"])},
        {"$set": {"name": payload.name, "email": payload.email}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise ErrorResponse("User not found", 404)
    return ok("User details updated successfully", sanitize(updated))

@app.put(f"{API}/auth/updatePassword")
def update_password(
    payload: UpdatePasswordRequest,
    user=Depends(protect),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if not payload.currentPassword or not payload.newPassword:
        raise ErrorResponse("Please provide both current and new passwords", 400)
    doc = find_by_id(db, "user", user["id"])
    if not doc or not verify_password(payload.currentPassword, doc.get("password", "")):
        raise ErrorResponse("Password is incorrect", 401)
    db["user"].update_one({"_id": doc["_id"]}, {"$set": {"password": hash_password(payload.newPassword)}})
    return token_response(user["id"], "Password updated successfully", settings)

@app.post(f"{API}/auth/forgotPassword")
def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    db: Database = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    user = db["user"].find_one({"email": payload.email})
    if not user:
        raise ErrorResponse("There is no user with that email", 404)

    raw_token, token_hash, expire = generate_reset_token()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"resetPasswordToken": token_hash, "resetPasswordExpire": expire}},
    )

    reset_url = f"{request.base_url}api/v1/auth/resetPassword/{raw_token}"
    text = (
        f"Dear {user['name']},\n\n"
        f"You are receiving this email because a request has been made to reset the password for your account. "
        f"If you did not make this request, please ignore this email.\n\n"
        f"To reset your password, please make a PUT request to the following URL:\n\n"
        f"{reset_url}\n\n"
        f"This link will expire in 10 minutes.\n"
    )
    html = (
        f"<p>Dear {user['name']},</p>"
        f"<p>To reset your password, please make a PUT request to the following URL:</p>"
        f'<p><a href="{reset_url}">{reset_url}</a></p>'
        f"<p>This link will expire in 10 minutes.</p>"
    )
    try:
        mailer.send(to=user["email"], subject="Password Reset Token Request", text=text, html=html)
    except ErrorResponse:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$unset": {"resetPasswordToken": "", "resetPasswordExpire": ""}},
        )
        raise ErrorResponse("Email could not be sent", 500)

    return {"success": True, "status": True, "data": "Email sent"}

@app.put(f"{API}/auth/resetPassword/{{reset_token}}")
def reset_password(
    reset_token: str,
    payload: ResetPasswordRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = db["user"].find_one({
        "resetPasswordToken": hash_token(reset_token),
        "resetPasswordExpire": {"$gt": datetime.now(timezone.utc)},
    })
    if not user:
        raise ErrorResponse("Invalid token or token has expired", 400)
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password": hash_password(payload.password)},
            "$unset": {"resetPasswordToken": "", "resetPasswordExpire": ""},
        },
    )
    return token_response(str(user["_id"]), "Password reset successful", settings)

@app.get(f"{API}/auth/confirmEmail")
def confirm_email(
    token: Optional[str] = None,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if not token:
        raise ErrorResponse("Invalid Token", 400)
    user = db["user"].find_one({"confirmEmailToken": hash_confirm_token(token), "isEmailConfirmed": False})
    if not user:
        raise ErrorResponse("Invalid Token", 400)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"isEmailConfirmed": True}, "$unset": {"confirmEmailToken": ""}},
    )
    return token_response(str(user["_id"]), "Email confirmed successfully.", settings)


# User Routes (admin only)
@app.get(f"{API}/users")
def list_users(
    admin=Depends(authorize("admin")),
    results=Depends(advanced_results("user", UserSchema, "Users")),
):
    return results

@app.get(f"{API}/users/{{user_id}}")
def get_user(user_id: str, admin=Depends(authorize("admin")), db: Database = Depends(get_db)):
    user = find_by_id(db, "user", user_id)
    if not user:
        raise ErrorResponse(f"No user found with the ID of {user_id}", 404)
    return ok("User retrieved successfully", sanitize(user))

@app.post(f"{API}/users", status_code=201)
def create_user(payload: CreateUserRequest, admin=Depends(authorize("admin")), db: Database = Depends(get_db)):
    user = UserSchema(
        name=payload.name,
        email=payload.email,
        role=payload.role,
        password=hash_password(payload.password),
    )
    doc = create_document(db, "user", user)
    return ok("User created successfully", sanitize(doc))

@app.put(f"{API}/users/{{user_id}}")
def update_user(user_id: str, payload: UpdateUserRequest, admin=Depends(authorize("admin")), db: Database = Depends(get_db)):
    changes = _changes(payload)
    if "password" in changes:
        changes["password"] = hash_password(changes["password"])
    oid = to_obj_id(user_id)
    if changes:
        user = db["user"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    else:
        user = db["user"].find_one({"_id": oid})
    if not user:
        raise ErrorResponse(f"User not found with id of {user_id}", 404)
    return ok("User updated successfully", sanitize(user))

@app.delete(f"{API}/users/{{user_id}}")
def delete_user(user_id: str, admin=Depends(authorize("admin")), db: Database = Depends(get_db)):
    user = db["user"].find_one_and_delete({"_id": to_obj_id(user_id)})
    if not user:
        raise ErrorResponse(f"User not found with id of {user_id}", 404)
    return ok("User deleted successfully", {})


# Bootcamp Routes
BOOTCAMP_COURSES = Populate(path="courses", collection="course", local_field="_id", foreign_field="bootcamp", many=True)

@app.get(f"{API}/bootcamps")
def list_bootcamps(results=Depends(advanced_results("bootcamp", BootcampSchema, "Bootcamps", BOOTCAMP_COURSES))):
    return results

@app.get(f"{API}/bootcamps/radius/{{zipcode}}/{{distance}}")
def bootcamps_in_radius(
    zipcode: str,
    distance: float,
    db: Database = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    bootcamps, radius = services.bootcamps_in_radius(db, geocoder, zipcode, distance)
    return ok(
        f"Bootcamps within the specified radius of {distance:g} miles have been successfully retrieved.",
        [sanitize(b) for b in bootcamps],
        count=len(bootcamps),
    )

@app.get(f"{API}/bootcamps/{{bootcamp_id}}")
def get_bootcamp(bootcamp_id: str, db: Database = Depends(get_db)):
    bootcamp = find_by_id(db, "bootcamp", bootcamp_id)
    if not bootcamp:
        raise ErrorResponse(f"Bootcamp not found with id of {bootcamp_id}", 404)
    return ok("Bootcamp retrieved successfully.", sanitize(bootcamp))

@app.post(f"{API}/bootcamps", status_code=201)
def create_bootcamp(
    payload: CreateBootcampRequest,
    user=Depends(authorize("publisher", "admin")),
    db: Database = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    doc = services.create_bootcamp(db, geocoder, user, payload.model_dump(exclude_none=True))
    return ok("Bootcamp created successfully.", sanitize(doc))

@app.put(f"{API}/bootcamps/{{bootcamp_id}}")
def update_bootcamp(
    bootcamp_id: str,
    payload: UpdateBootcampRequest,
    user=Depends(authorize("publisher", "admin")),
    db: Database = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    doc = services.update_bootcamp(db, geocoder, bootcamp_id, user, _changes(payload))
    return ok("Bootcamp updated successfully.", sanitize(doc))

@app.delete(f"{API}/bootcamps/{{bootcamp_id}}")
def delete_bootcamp(bootcamp_id: str, user=Depends(authorize("publisher", "admin")), db: Database = Depends(get_db)):
    services.delete_bootcamp(db, bootcamp_id, user)
    return ok("Bootcamp deleted successfully.", {})

@app.put(f"{API}/bootcamps/{{bootcamp_id}}/photo")
def bootcamp_photo_upload(
    bootcamp_id: str,
    file: Optional[UploadFile] = File(None),
    user=Depends(authorize("publisher", "admin")),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filename = services.upload_bootcamp_photo(db, settings, bootcamp_id, user, file)
    return ok("Bootcamp photo uploaded successfully.", filename)


# Course Routes
COURSE_BOOTCAMP = Populate(
    path="bootcamp",
    collection="bootcamp",
    select=["name", "description", "email", "website", "location.city"],
)

@app.get(f"{API}/courses")
def list_courses(results=Depends(advanced_results("course", CourseSchema, "Courses", COURSE_BOOTCAMP))):
    return results

@app.get(f"{API}/bootcamps/{{bootcamp_id}}/courses")
def list_bootcamp_courses(bootcamp_id: str, db: Database = Depends(get_db)):
    courses = services.children_of(db, "course", bootcamp_id)
    return ok("All Courses retrieved successfully.", [sanitize(c) for c in courses], count=len(courses))

@app.get(f"{API}/courses/{{course_id}}")
def get_course(course_id: str, db: Database = Depends(get_db)):
    course = find_by_id(db, "course", course_id)
    if not course:
        raise ErrorResponse(f"No course with the id of {course_id}", 404)
    populate_documents(db, [course], Populate(path="bootcamp", collection="bootcamp", select=["name", "description", "email", "website"]))
    return ok("Course retrieved successfully.", sanitize(course))

@app.post(f"{API}/bootcamps/{{bootcamp_id}}/courses", status_code=201)
def add_course(
    bootcamp_id: str,
    payload: CreateCourseRequest,
    user=Depends(authorize("publisher", "admin")),
    db: Database = Depends(get_db),
):
    doc = services.add_course(db, bootcamp_id, user, payload.model_dump())
    return ok("Course created successfully.", sanitize(doc))

@app.put(f"{API}/courses/{{course_id}}")
def update_course(
    course_id: str,
    payload: UpdateCourseRequest,
    user=Depends(authorize("publisher", "admin")),
    db: Database = Depends(get_db),
):
    doc = services.update_course(db, course_id, user, _changes(payload))
    return ok("Course updated successfully.", sanitize(doc))

@app.delete(f"{API}/courses/{{course_id}}")
def delete_course(course_id: str, user=Depends(authorize("publisher", "admin")), db: Database = Depends(get_db)):
    services.delete_course(db, course_id, user)
    return ok("Course deleted successfully.", {})


# Review Routes
REVIEW_BOOTCAMP = Populate(path="bootcamp", collection="bootcamp", select=["name", "description"])

@app.get(f"{API}/reviews")
def list_reviews(results=Depends(advanced_results("review", ReviewSchema, "Reviews", REVIEW_BOOTCAMP))):
    return results

@app.get(f"{API}/bootcamps/{{bootcamp_id}}/reviews")
def list_bootcamp_reviews(bootcamp_id: str, db: Database = Depends(get_db)):
    reviews = services.children_of(db, "review", bootcamp_id)
    return ok(
        f"Reviews for Bootcamp ID {bootcamp_id} fetched successfully.",
        [sanitize(r) for r in reviews],
        count=len(reviews),
    )

@app.get(f"{API}/reviews/{{review_id}}")
def get_review(review_id: str, db: Database = Depends(get_db)):
    review = find_by_id(db, "review", review_id)
    if not review:
        raise ErrorResponse(f"No review found with the id of {review_id}", 404)
    populate_documents(db, [review], REVIEW_BOOTCAMP)
    return ok(f"Review with ID {review_id} fetched successfully.", sanitize(review))

@app.post(f"{API}/bootcamps/{{bootcamp_id}}/reviews", status_code=201)
def add_review(
    bootcamp_id: str,
    payload: CreateReviewRequest,
    user=Depends(authorize("user", "admin")),
    db: Database = Depends(get_db),
):
    doc = services.add_review(db, bootcamp_id, user, payload.model_dump())
    return ok("Review added successfully.", sanitize(doc))

@app.put(f"{API}/reviews/{{review_id}}")
def update_review(
    review_id: str,
    payload: UpdateReviewRequest,
    user=Depends(authorize("user", "admin")),
    db: Database = Depends(get_db),
):
    doc = services.update_review(db, review_id, user, _changes(payload))
    return ok("Review updated successfully.", sanitize(doc))

@app.delete(f"{API}/reviews/{{review_id}}")
def delete_review(review_id: str, user=Depends(authorize("user", "admin")), db: Database = Depends(get_db)):
    services.delete_review(db, review_id, user)
    return ok("Review deleted successfully.", {})


# Utility endpoints
@app.get("/")
def root():
    return {"message": "DevCamper API running"}

@app.get("/test")
def test_database():
    try:
        db = get_db()
        collections = db.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {e}"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
