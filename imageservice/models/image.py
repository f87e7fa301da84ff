"""Pydantic models for image responses."""

from pydantic import BaseModel


class ImageCreated(BaseModel):
    id: int
    url: str


class ImageUpdated(BaseModel):
    id: int
    url: str
    updated: bool = True


class AnnotatedImage(BaseModel):
    id: int
    url: str
    originalImageId: int
