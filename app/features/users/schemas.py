"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import date, datetime
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.features.users.models import ContractType, UserStatus


EMPLOYEE_NUMBER_PATTERN = r"^[A-Za-z0-9]{3,20}$"


class DepartmentRef(BaseModel):
    id: str
    name: str
    code: str

    model_config = {"from_attributes": True}


class EmploymentResponse(BaseModel):
    start_date: date
    end_date: date | None = None
    contract_type: str

    model_config = {"from_attributes": True}


class UserBase(BaseModel):
    """Base user schema with common fields."""
    employee_number: str = Field(..., pattern=EMPLOYEE_NUMBER_PATTERN)
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.lower()

    @field_validator("name")
    @classmethod
    def name_stripped(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class UserCreate(UserBase):
    """Schema for creating a new user together with its employment record."""
    password: str = Field(..., min_length=8)
    department_id: str | None = None
    status: UserStatus = UserStatus.PENDING
    start_date: date
    end_date: date | None = None
    contract_type: ContractType = ContractType.FULL_TIME

    @field_validator("status")
    @classmethod
    def initial_status(cls, v: UserStatus) -> UserStatus:
        if v not in (UserStatus.PENDING, UserStatus.ACTIVE):
            raise ValueError("New users start as pending or active")
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "UserCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must be on or after the start date")
        return self


class UserUpdate(BaseModel):
    """Partial update; a status change is applied through the lifecycle transitions."""
    employee_number: str | None = Field(None, pattern=EMPLOYEE_NUMBER_PATTERN)
    name: str | None = Field(None, min_length=2, max_length=100)
    email: EmailStr | None = None
    password: str | None = Field(None, min_length=8)
    department_id: str | None = None
    status: UserStatus | None = None
    reason: str | None = Field(None, max_length=500)
    start_date: date | None = None
    end_date: date | None = None
    contract_type: ContractType | None = None

    @field_validator("employee_number", "name", "email", mode="before")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str | None) -> str | None:
        return v.lower() if v else v


class BlockRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RoleRef(BaseModel):
    id: str
    name: str


class UserResponse(BaseModel):
    """Schema for user responses; never carries the credential hash."""
    id: str
    employee_number: str
    name: str
    email: str
    status: str
    department_id: str | None = None
    department: DepartmentRef | None = None
    employment: EmploymentResponse | None = None
    roles: list[RoleRef] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserDeleted(BaseModel):
    message: str
    id: str
    permanent: bool
    roles_removed: int = 0
