"""Pydantic models for site-wide policy settings."""

from pydantic import BaseModel


class SettingsRead(BaseModel):
    site_name: str
    require_affordable_requests: bool

    class Config:
        from_attributes = True


class SettingsUpdate(BaseModel):
    site_name: str | None = None
    require_affordable_requests: bool | None = None
