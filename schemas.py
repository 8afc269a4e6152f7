"""
Database Schemas for the Bootcamp Directory

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Bootcamp -> "bootcamp").

We will use these collections:
- user: accounts (user, publisher, admin)
- bootcamp: published bootcamps, one per publisher
- course: courses offered by a bootcamp
- review: user reviews of a bootcamp, one per (bootcamp, user)

References between collections are stored as ObjectId hex strings.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

Role = Literal["user", "publisher", "admin"]
Skill = Literal["beginner", "intermediate", "advanced"]

CAREERS = (
    "Web Development",
    "Mobile Development",
    "Frontend Development",
    "Backend Development",
    "Full Stack Web Development",
    "Programming Languages",
    "Software Development",
    "Computer Science",
    "UI/UX",
    "Data Science",
    "Business",
    "Project Management",
    "Data Analysis",
    "Cloud Engineering",
    "Cloud Computing",
    "Software Engineering",
    "Artificial Intelligence",
    "Machine Learning",
    "Big Data",
    "Game Development",
    "Robotics",
    "Coding for Kids",
    "Cybersecurity",
    "Network Engineering",
    "IT Support",
    "Data Visualization",
    "Data Engineering",
    "Predictive Analytics",
    "Game Design",
    "Digital Marketing",
    "IT Management",
    "Software Testing",
    "Cloud Architecture",
    "Data Modeling",
    "Network Administration",
    "Database Management",
    "Data Warehousing",
    "Other",
)

URL_PATTERN = r"^https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b([-a-zA-Z0-9()@:%_+.~#?&/=]*)$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_careers(value: List[str]) -> List[str]:
    unknown = [c for c in value if c not in CAREERS]
    if unknown:
        raise ValueError(f"Invalid career(s): {', '.join(unknown)}")
    return value


class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr
    role: Role = Field("user")
    password: str = Field(..., description="BCrypt hash of password")
    resetPasswordToken: Optional[str] = Field(None, description="SHA-256 of the emailed reset token")
    resetPasswordExpire: Optional[datetime] = None
    confirmEmailToken: Optional[str] = Field(None, description="SHA-256 of the emailed confirmation token")
    isEmailConfirmed: bool = False
    createdAt: datetime = Field(default_factory=utcnow)


class Location(BaseModel):
    """GeoJSON point plus the formatted address parts returned by the geocoder."""

    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., min_length=2, max_length=2, description="[longitude, latitude]")
    formattedAddress: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    country: Optional[str] = None


class Bootcamp(BaseModel):
    name: str = Field(..., min_length=1, max_length=75)
    slug: str = Field(..., description="Lowercase slug derived from name")
    description: str = Field(..., min_length=1, max_length=500)
    website: Optional[str] = Field(None, pattern=URL_PATTERN)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    location: Optional[Location] = None
    careers: List[str] = Field(..., min_length=1)
    averageRating: Optional[float] = Field(None, ge=1, le=10)
    averageCost: Optional[float] = None
    photo: str = "no-photo.jpg"
    housing: bool = False
    jobAssistance: bool = False
    jobGuarantee: bool = False
    acceptGi: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
    user: str = Field(..., description="Reference to user _id (owner)")

    @field_validator("careers")
    @classmethod
    def valid_careers(cls, value: List[str]) -> List[str]:
        return check_careers(value)


class Course(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    weeks: int = Field(..., ge=1)
    tuition: float = Field(..., ge=0)
    minimumSkill: Skill
    scholarshipAvailable: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
    bootcamp: str = Field(..., description="Reference to bootcamp _id")
    user: str = Field(..., description="Reference to user _id (author)")


class Review(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    text: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=10)
    createdAt: datetime = Field(default_factory=utcnow)
    bootcamp: str = Field(..., description="Reference to bootcamp _id")
    user: str = Field(..., description="Reference to user _id (author)")
