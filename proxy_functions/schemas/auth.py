from typing import Any

from pydantic import BaseModel, Field, field_validator


class UserContext(BaseModel):
    id: str
    email: str | None = None


class InviteRequest(BaseModel):
    email: str | None = None
    full_name: str | None = Field(default=None, alias="fullName")
    role: str = "viewer"
    project_id: str | None = Field(default=None, alias="projectId")
    project_role: str = Field(default="viewer", alias="projectRole")
    permissions: list[Any] = Field(default_factory=list)

    @field_validator("role", "project_role", mode="before")
    @classmethod
    def null_role_is_viewer(cls, value: Any) -> Any:
        return "viewer" if value is None else value
