import re
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

PHONE_PATTERN = re.compile(r"^[0-9]{10,13}$")


class CamelModel(BaseModel):
    # Documents are stored snake_case; the wire format is camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value and not PHONE_PATTERN.match(re.sub(r"\D", "", value)):
        raise ValueError("Invalid phone number format. Should be 10-13 digits")
    return value


def _check_birth_date(value: Optional[date]) -> Optional[date]:
    if value and value > date.today():
        raise ValueError("Birth date cannot be in the future")
    return value


# ---------- Auth ----------
class UserBase(CamelModel):
    name: str
    email: EmailStr


class UserCreate(UserBase):
    password: str
    role: Literal["user", "admin"] = "user"
    address: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[date] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()

    @field_validator("password")
    @classmethod
    def password_length(cls, v):
        if len(v) < 6:
            raise ValueError("Password must be at least 6 characters long")
        return v

    check_phone = field_validator("phone")(_check_phone)
    check_birth_date = field_validator("birth_date")(_check_birth_date)


class UserResponse(UserBase):
    id: int
    member_id: Optional[str] = None
    role: str
    status: str = "active"
    address: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    profile_image: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserAdminUpdate(CamelModel):
    id: int
    name: str = Field(min_length=1)
    role: Literal["user", "admin"]
    status: Literal["active", "inactive"]


class ProfileUpdate(CamelModel):
    name: str = Field(min_length=2)
    address: str = Field(min_length=5)
    phone: str
    birth_date: date

    check_phone = field_validator("phone")(_check_phone)
    check_birth_date = field_validator("birth_date")(_check_birth_date)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ---------- Books ----------
class BookResponse(CamelModel):
    id: int
    title: str
    author: str
    publisher: Optional[str] = None
    year: Optional[int] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    stock: int
    cover_image: Optional[str] = None
    available: bool
    loan_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookSummary(CamelModel):
    id: int
    title: str
    author: str
    cover_image: Optional[str] = None
    stock: Optional[int] = None


class UserSummary(CamelModel):
    id: int
    member_id: Optional[str] = None
    name: str
    email: str
    profile_image: Optional[str] = None


# ---------- Loans ----------
class LoanCreate(CamelModel):
    book_id: int
    borrow_date: Optional[datetime] = None
    notes: Optional[str] = None


class LoanStatusUpdate(CamelModel):
    id: int
    status: Literal["APPROVED", "REJECTED"]


class LoanAction(CamelModel):
    id: int


class LoanResponse(CamelModel):
    id: int
    user_id: int
    book_id: int
    borrow_date: datetime
    return_date: datetime
    actual_return_date: Optional[datetime] = None
    status: str
    notes: Optional[str] = None
    late_days: int = 0
    fine: int = 0
    book: Optional[BookSummary] = None
    user: Optional[UserSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------- Wishlist ----------
class WishlistCreate(CamelModel):
    book_id: int


class WishlistItem(CamelModel):
    id: int
    book_id: int
    title: str
    author: str
    cover_url: str


# ---------- Reports ----------
class ReportFilters(CamelModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[str] = None
    member_id: Optional[int] = None
    year: Optional[int] = None


class ReportExportRequest(CamelModel):
    format: str = "excel"
    filters: ReportFilters = Field(default_factory=ReportFilters)


class MonthlyStat(CamelModel):
    name: str
    month: Optional[str] = None
    borrowings: int
    returns: int
    late: int


class ReportSummary(CamelModel):
    total_loans: int
    active_loans: int
    overdue_loans: int
    returned_loans: int
    total_fines: int
    unique_members: int
    unique_books: int


class ReportStatistics(CamelModel):
    monthly: List[MonthlyStat]
    summary: ReportSummary


class ReportLoan(CamelModel):
    id: int
    member_id: int
    member_code: Optional[str] = None
    member_name: str
    member_email: Optional[str] = None
    book_id: int
    book_title: str
    book_author: Optional[str] = None
    book_publisher: Optional[str] = None
    isbn: Optional[str] = None
    borrow_date: datetime
    return_date: datetime
    actual_return_date: Optional[datetime] = None
    status: str
    late_days: int
    fine: int
    notes: str = ""


class ReportResponse(CamelModel):
    loans: List[ReportLoan]
    statistics: ReportStatistics
