from datetime import date
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, conint, model_validator


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class APIMessage(BaseModel):
    success: bool = True
    message: str = Field(..., description="Human readable message")


# =========================
# Auth
# =========================

class LoginRequest(_Request):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=100)


class RefreshRequest(_Request):
    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class SessionUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Any = Field(..., alias="userId")
    username: str
    role: str


class TokenData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken", description="JWT access token")
    user: SessionUser


class TokenResponse(BaseModel):
    success: bool = True
    message: str
    data: TokenData


class UserCreateRequest(_Request):
    user_name: str = Field(..., alias="userName", min_length=1, max_length=50)
    user_password: str = Field(..., alias="userPassword", min_length=1, max_length=100)
    user_type: Literal["Admin", "User"] = Field(..., alias="userType")
    user_availability_status: Literal["YES", "NO"] = Field(..., alias="userAvailabilityStatus")
    mobile: str = Field(..., min_length=1, max_length=15)
    email: EmailStr


# =========================
# Lookups
# =========================

class SchemesRequest(_Request):
    section: str = Field(..., min_length=1, max_length=50)


class KeywordSearch(_Request):
    search: Optional[str] = Field(None, max_length=253)

    @property
    def search_pattern(self) -> Optional[str]:
        return f"%{self.search}%" if self.search else None


# =========================
# Reports
# =========================

class HighValueReportRequest(_Request):
    branch_name: str = Field(..., alias="branchName", min_length=1, max_length=10)
    section: str = Field(..., min_length=1, max_length=10)
    scheme: str = Field(..., min_length=1, max_length=30)
    min_amount: Decimal = Field(
        ...,
        ge=0,
        max_digits=18,
        decimal_places=2,
        validation_alias=AliasChoices("minAmount", "amount1", "min_amount"),
    )
    max_amount: Decimal = Field(
        ...,
        ge=0,
        max_digits=18,
        decimal_places=2,
        validation_alias=AliasChoices("maxAmount", "amount2", "max_amount"),
    )
    from_date: date = Field(..., alias="fromDate")
    to_date: date = Field(..., alias="toDate")

    @model_validator(mode="after")
    def _check_ranges(self) -> "HighValueReportRequest":
        if self.min_amount > self.max_amount:
            raise ValueError("Minimum amount cannot be greater than maximum amount")
        if self.from_date > self.to_date:
            raise ValueError("From date cannot be after to date")
        return self


class UserRightRequest(_Request):
    user: str = Field(..., min_length=1, max_length=100, validation_alias=AliasChoices("user", "Users"))


class UserRightTransferRequest(_Request):
    user: str = Field(..., min_length=1, max_length=10)
    from_date: date = Field(..., alias="fromDate")
    to_date: date = Field(..., alias="toDate")

    @model_validator(mode="after")
    def _check_dates(self) -> "UserRightTransferRequest":
        if self.from_date > self.to_date:
            raise ValueError("From date cannot be after to date")
        return self


class IssueRequest(_Request):
    cmp_code: str = Field(..., alias="Cmp_Code", min_length=1, max_length=20)
    issue_module: str = Field(..., alias="Issue_Module", min_length=1, max_length=100)
    issue_description: str = Field(..., alias="Issue_Description", min_length=1)
    issue_remarks: Optional[str] = Field(None, alias="Issue_Remarks")
    reported_by: str = Field(..., alias="Reported_By", min_length=1, max_length=50)
    reported_date: date = Field(..., alias="Reported_Date")
    priority: Literal["Low", "Medium", "High"] = Field(..., alias="Priority")
    due_date: Optional[date] = Field(None, alias="Due_Date")


class DocumentRequest(_Request):
    comp_code: str = Field(..., alias="compCode", min_length=1, max_length=50)
    section: str = Field(..., min_length=1, max_length=50)
    keyword: str = Field(..., min_length=1, max_length=255)
    details: str = Field(..., min_length=1)
    user_name: str = Field(..., alias="userName", min_length=1, max_length=50)


# =========================
# Member registrations
# =========================

class ProgrammeSlotRequest(_Request):
    programme_name: str = Field(..., alias="programmeName", min_length=1, max_length=50)
    time_slots: str = Field(..., alias="timeSlots", min_length=1, max_length=50)


class MembersReportRequest(ProgrammeSlotRequest):
    option_value: conint(ge=0) = Field(..., alias="optionValue")


class AttendMemberRequest(_Request):
    phone: str = Field(..., min_length=1, max_length=20)
    atn_persons: str = Field(..., alias="atnPersons", min_length=1, max_length=10)


class RegisterMemberRequest(_Request):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=20)
    no_of_person: conint(ge=1) = Field(..., alias="noOfPerson")
    time_slot: str = Field(..., alias="timeSlot", min_length=1, max_length=50)


class HealthStatus(BaseModel):
    server: str
    database: str
    timestamp: str


def public_user(user: Dict[str, Any]) -> SessionUser:
    """Session view of a tbl_usermaster row."""
    return SessionUser(
        user_id=user["user_id"],
        username=user["user_name"],
        role=str(user.get("user_type") or "user").lower(),
    )
