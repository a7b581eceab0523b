from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ValidationError

from piapi_mcp.errors import MalformedOutputError, NoResultError


class MediaKind(str, Enum):
    image = "image"
    video = "video"
    audio = "audio"
    model_3d = "model_3d"
    audio_clips = "audio_clips"
    video_assets = "video_assets"


FailureReason = Literal["malformed", "no_result"]


@dataclass(frozen=True)
class Normalized:
    value: Any = None
    reason: Optional[FailureReason] = None
    diagnostic: str = ""

    @classmethod
    def ok(cls, value: Any) -> "Normalized":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: FailureReason, diagnostic: str) -> "Normalized":
        return cls(reason=reason, diagnostic=diagnostic)

    @property
    def is_ok(self) -> bool:
        return self.reason is None

    def unwrap(self, task_id: Optional[str] = None) -> Any:
        if self.reason == "malformed":
            raise MalformedOutputError(
                f"Task output has an unexpected shape: {self.diagnostic}", task_id
            )
        if self.reason == "no_result":
            raise NoResultError(self.diagnostic, task_id)
        return self.value


# Output shapes


class ImageOutput(BaseModel):
    image_url: Optional[str] = None
    image_urls: Optional[list[str]] = None
    temporary_image_urls: Optional[list[str]] = None


class VideoOutput(BaseModel):
    video_url: str


class AudioOutput(BaseModel):
    audio_url: str


class Model3dOutput(BaseModel):
    model_file: str
    combined_video: Optional[str] = None
    no_background_image: Optional[str] = None


class SongClip(BaseModel):
    song_path: str
    title: Optional[str] = None
    lyrics: Optional[str] = None
    duration: Optional[float] = None
    image_path: Optional[str] = None


class AudioClipsOutput(BaseModel):
    songs: list[SongClip]


class Resource(BaseModel):
    resource: Optional[str] = None
    resource_without_watermark: Optional[str] = None


class VideoWork(BaseModel):
    video: Resource
    cover: Optional[Resource] = None


class VideoAssetsOutput(BaseModel):
    video_url: Optional[str] = None
    works: Optional[list[VideoWork]] = None


# Extractors


def _image_urls(output: ImageOutput) -> Normalized:
    urls: list[str] = []
    if output.image_url:
        urls.append(output.image_url)
    if output.image_urls is not None:
        urls.extend(output.image_urls)
    elif output.temporary_image_urls:
        # a null canonical list means the temporary list is the authoritative one
        urls.extend(output.temporary_image_urls)

    urls = [url for url in urls if url]
    if not urls:
        return Normalized.failure("no_result", "Task completed but no image URLs found")
    return Normalized.ok(urls)


def _video_url(output: VideoOutput) -> Normalized:
    if not output.video_url:
        return Normalized.failure("no_result", "Task completed but no video URL found")
    return Normalized.ok(output.video_url)


def _audio_url(output: AudioOutput) -> Normalized:
    if not output.audio_url:
        return Normalized.failure("no_result", "Task completed but no audio URL found")
    return Normalized.ok(output.audio_url)


def _model_bundle(output: Model3dOutput) -> Normalized:
    if not output.model_file:
        return Normalized.failure("no_result", "Task completed but no model file found")
    return Normalized.ok(output.model_dump(exclude_none=True))


def _audio_clips(output: AudioClipsOutput) -> Normalized:
    clips = [clip for clip in output.songs if clip.song_path]
    if not clips:
        return Normalized.failure("no_result", "Task completed but no audio clips found")
    return Normalized.ok(clips)


def _video_assets(output: VideoAssetsOutput) -> Normalized:
    urls: list[str] = []
    if output.video_url:
        urls.append(output.video_url)
    for work in output.works or []:
        url = work.video.resource_without_watermark or work.video.resource
        if url:
            urls.append(url)
    if not urls:
        return Normalized.failure("no_result", "Task completed but no video URLs found")
    return Normalized.ok(urls)


_EXTRACTORS: dict[MediaKind, tuple[type[BaseModel], Callable[[Any], Normalized]]] = {
    MediaKind.image: (ImageOutput, _image_urls),
    MediaKind.video: (VideoOutput, _video_url),
    MediaKind.audio: (AudioOutput, _audio_url),
    MediaKind.model_3d: (Model3dOutput, _model_bundle),
    MediaKind.audio_clips: (AudioClipsOutput, _audio_clips),
    MediaKind.video_assets: (VideoAssetsOutput, _video_assets),
}


def normalize(kind: MediaKind, raw_output: Any) -> Normalized:
    """Validate ``raw_output`` for ``kind`` and extract its usable value"""
    if kind not in _EXTRACTORS:
        raise ValueError(f"Unsupported media kind: {kind!r}")

    shape, extract = _EXTRACTORS[kind]
    try:
        output = shape.model_validate(raw_output)
    except ValidationError as e:
        return Normalized.failure("malformed", _describe(e))
    return extract(output)


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "output"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
