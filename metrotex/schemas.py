from datetime import datetime
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .config import HordeConfig
from .errors import InvalidRequest
from .image_jobs import GenerationRequest

IMAGE_SIZE_PRESETS: Dict[str, Tuple[int, int]] = {
    "small": (512, 512),
    "medium": (768, 768),
    "large": (1024, 1024),
    "portrait": (512, 768),
    "landscape": (768, 512),
}


def parse_image_size(value: str) -> Tuple[int, int]:
    """Parse ``"768x512"`` or a preset name into ``(width, height)``."""
    key = value.strip().lower()
    if key in IMAGE_SIZE_PRESETS:
        return IMAGE_SIZE_PRESETS[key]
    parts = key.split("x")
    if len(parts) == 2 and parts[0].isdigit() and parts[1].isdigit():
        return int(parts[0]), int(parts[1])
    raise InvalidRequest(f"Invalid imageSize: {value!r}")


def _check_dimension(name: str, value: int) -> None:
    if value < 64 or value > 2048 or value % 64:
        raise InvalidRequest(f"{name} must be a multiple of 64 between 64 and 2048")


# Images

class GenerateImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    steps: Optional[int] = None
    image_size: Optional[str] = Field(default=None, alias="imageSize")
    sampler_name: Optional[str] = Field(default=None, alias="samplerName")
    cfg_scale: Optional[float] = Field(default=None, alias="cfgScale")
    models: Optional[List[str]] = None
    wait: Optional[bool] = None

    def to_generation_request(self, defaults: HordeConfig) -> GenerationRequest:
        width, height = defaults.width, defaults.height
        if self.image_size:
            width, height = parse_image_size(self.image_size)
        if self.width is not None:
            width = self.width
        if self.height is not None:
            height = self.height
        _check_dimension("width", width)
        _check_dimension("height", height)
        steps = self.steps if self.steps is not None else defaults.steps
        if steps < 1 or steps > 100:
            raise InvalidRequest("steps must be between 1 and 100")
        return GenerationRequest(
            prompt=(self.prompt or "").strip(),
            width=width,
            height=height,
            steps=steps,
            sampler_name=self.sampler_name or defaults.sampler_name,
            cfg_scale=self.cfg_scale if self.cfg_scale is not None else defaults.cfg_scale,
            models=tuple(m.strip() for m in (self.models or []) if m.strip()),
        )


class ImageSubmittedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["submitted"] = "submitted"
    image_id: str = Field(alias="imageId")
    check_url: str = Field(alias="checkUrl")


class ImageResultResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    image_url: str = Field(alias="imageUrl")
    model: str
    image_id: str = Field(alias="imageId")


class ImageStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["processing", "completed", "failed"]
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    model: Optional[str] = None
    wait_time: Optional[int] = Field(default=None, alias="waitTime")
    queue_position: Optional[int] = Field(default=None, alias="queuePosition")
    error: Optional[str] = None


# Chat

class ContextMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    """Incoming chat message payload."""

    message: Optional[str] = None
    context: List[ContextMessage] = Field(default_factory=list)
    session_id: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str
    source: Literal["local", "AI"]
    model: Optional[str] = None
    timestamp: datetime


class ChatHistoryMessage(BaseModel):
    role: str
    content: str
    source: Optional[str] = None


class ChatHistoryResponse(BaseModel):
    session_id: str
    messages: List[ChatHistoryMessage]


# Knowledge

class TrainRequest(BaseModel):
    question: Optional[str] = None
    answer: Optional[str] = None


class TrainResponse(BaseModel):
    success: bool
    id: int


class KnowledgeEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question: str
    answer: str
    created_at: Optional[datetime] = None
