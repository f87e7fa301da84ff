"""Pydantic models for annotation requests.

Fields mirror the JSON the drawing client sends. Missing or falsy values fall
back to defaults so a minimally specified stroke or label still renders; a
non-array ``strokes``, ``texts`` or ``points`` value counts as empty.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_STROKE_COLOR = "#ff0000"
DEFAULT_STROKE_WIDTH = 4.0
DEFAULT_TEXT_COLOR = "#00ff00"
DEFAULT_FONT_SIZE = 24.0
DEFAULT_TEXT_X = 20.0
DEFAULT_TEXT_Y = 20.0


def _list_or_empty(value):
    return value if isinstance(value, list) else []


class Point(BaseModel):
    x: float
    y: float


class Stroke(BaseModel):
    points: list[Point] = Field(default_factory=list)
    color: str = DEFAULT_STROKE_COLOR
    width: float = Field(default=DEFAULT_STROKE_WIDTH, gt=0)

    @field_validator("points", mode="before")
    @classmethod
    def points_as_list(cls, value):
        return _list_or_empty(value)

    @field_validator("color", mode="before")
    @classmethod
    def default_color(cls, value):
        return str(value) if value else DEFAULT_STROKE_COLOR

    @field_validator("width", mode="before")
    @classmethod
    def default_width(cls, value):
        return value if value else DEFAULT_STROKE_WIDTH

    @property
    def renderable(self) -> bool:
        return len(self.points) >= 2


class TextLabel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    x: float = DEFAULT_TEXT_X
    y: float = DEFAULT_TEXT_Y
    text: str | None = None
    color: str = DEFAULT_TEXT_COLOR
    font_size: float = Field(default=DEFAULT_FONT_SIZE, gt=0, alias="fontSize")

    @field_validator("x", mode="before")
    @classmethod
    def default_x(cls, value):
        # Only absence falls back; 0 is a real coordinate
        return DEFAULT_TEXT_X if value is None else value

    @field_validator("y", mode="before")
    @classmethod
    def default_y(cls, value):
        return DEFAULT_TEXT_Y if value is None else value

    @field_validator("text", mode="before")
    @classmethod
    def stringify_text(cls, value):
        return str(value) if value else None

    @field_validator("color", mode="before")
    @classmethod
    def default_color(cls, value):
        return str(value) if value else DEFAULT_TEXT_COLOR

    @field_validator("font_size", mode="before")
    @classmethod
    def default_font_size(cls, value):
        return value if value else DEFAULT_FONT_SIZE

    @property
    def renderable(self) -> bool:
        return bool(self.text)


class AnnotationRequest(BaseModel):
    strokes: list[Stroke] = Field(default_factory=list)
    texts: list[TextLabel] = Field(default_factory=list)

    @field_validator("strokes", "texts", mode="before")
    @classmethod
    def lists_or_empty(cls, value):
        return _list_or_empty(value)
