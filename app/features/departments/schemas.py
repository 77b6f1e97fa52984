"""
Pydantic schemas for departments.
"""
from datetime import datetime
from pydantic import BaseModel, Field, field_validator, model_validator


CODE_PATTERN = r"^[A-Za-z0-9]{2,10}$"


class DepartmentBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    code: str = Field(..., pattern=CODE_PATTERN, description="2-10 letters or digits, stored upper-cased")

    @field_validator("name")
    @classmethod
    def name_stripped(cls, v: str) -> str:
        return v.strip()

    @field_validator("code")
    @classmethod
    def code_uppercase(cls, v: str) -> str:
        return v.upper()


class DepartmentCreate(DepartmentBase):
    pass


class DepartmentUpdate(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=100)
    code: str | None = Field(None, pattern=CODE_PATTERN)

    @field_validator("code")
    @classmethod
    def code_uppercase(cls, v: str | None) -> str | None:
        return v.upper() if v else v

    @model_validator(mode="after")
    def at_least_one(self) -> "DepartmentUpdate":
        if self.name is None and self.code is None:
            raise ValueError("At least one field (name or code) is required")
        return self


class DepartmentResponse(DepartmentBase):
    id: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DepartmentUserCount(BaseModel):
    department_id: str | None = None
    department_name: str | None = None
    count: int
