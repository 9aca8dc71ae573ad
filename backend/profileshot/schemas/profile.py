from pydantic import BaseModel, Field, field_validator


class ProfileScreenshotRequest(BaseModel):
    profile_url: str = Field(alias="profileUrl")

    model_config = {"populate_by_name": True}

    @field_validator("profile_url")
    @classmethod
    def strip_url(cls, v: str) -> str:
        return v.strip()


class ErrorResponse(BaseModel):
    error: str
    message: str


class HealthResponse(BaseModel):
    status: str
    message: str
