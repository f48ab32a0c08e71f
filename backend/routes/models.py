"""Pydantic request/response models for API endpoints."""

from typing import Any

from pydantic import BaseModel


class CreateCampaign(BaseModel):
    title: str = ""
    prompt: str
    character_info: Any = ""


class ActionBody(BaseModel):
    action: str


class CheckConnectionBody(BaseModel):
    provider_url: str
    api_key: str = ""
    provider_format: str = "koboldcpp"
