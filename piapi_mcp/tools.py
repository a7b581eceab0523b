import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

import aiohttp
from pydantic import BaseModel, Field, ValidationError, field_validator

from piapi_mcp.config import Settings
from piapi_mcp.errors import (
    MediaTaskError,
    ParameterValidationError,
    ProviderConnectionError,
)
from piapi_mcp.models import JobConfig, TaskResult
from piapi_mcp.normalizer import MediaKind, SongClip, normalize
from piapi_mcp.sinks import LoguruTaskLogger, ProgressReporter, TaskLogger
from piapi_mcp.task_client import PiAPITaskClient


@dataclass(frozen=True)
class MediaTool:
    name: str
    description: str
    params_model: type[BaseModel]
    build_input: Callable[[Any], dict]
    model: str
    task_type: str
    kind: MediaKind
    job_config: JobConfig
    render: Callable[[TaskResult, Any], list[str]]

    def input_schema(self) -> dict:
        return self.params_model.model_json_schema()

    def build_body(self, params: BaseModel, settings: Settings) -> dict:
        return {
            "model": self.model,
            "task_type": self.task_type,
            "input": self.build_input(params),
            "config": {
                "service_mode": settings.service_mode,
                "webhook_config": {
                    "endpoint": settings.webhook_endpoint,
                    "secret": settings.webhook_secret,
                },
            },
        }


# Parameter models


class ImageParams(BaseModel):
    prompt: str = Field(min_length=1, description="Text description of the image")
    negative_prompt: str = Field("", description="What the image should avoid")
    width: int = Field(1024, ge=128, le=1024, description="Image width in pixels")
    height: int = Field(1024, ge=128, le=1024, description="Image height in pixels")


class MidjourneyParams(BaseModel):
    prompt: str = Field(min_length=1)
    aspect_ratio: str = Field("1:1", pattern=r"^\d+:\d+$")
    process_mode: Literal["relax", "fast", "turbo"] = "fast"


class VideoParams(BaseModel):
    prompt: str = Field(min_length=1)
    negative_prompt: str = ""
    aspect_ratio: Literal["16:9", "9:16", "1:1"] = "16:9"


class KlingVideoParams(BaseModel):
    prompt: str = Field(min_length=1)
    negative_prompt: str = ""
    cfg_scale: float = Field(0.5, ge=0, le=1)
    duration: int = Field(5, json_schema_extra={"enum": [5, 10]})
    aspect_ratio: Literal["16:9", "9:16", "1:1"] = "16:9"
    mode: Literal["std", "pro"] = "std"

    @field_validator("duration")
    @classmethod
    def _supported_duration(cls, value: int) -> int:
        if value not in (5, 10):
            raise ValueError("duration must be 5 or 10 seconds")
        return value


class MusicParams(BaseModel):
    prompt: str = Field(min_length=1, description="Description of the song")
    lyrics_type: Literal["generate", "instrumental", "user"] = "generate"
    lyrics: str = Field("", description="Lyrics, used when lyrics_type is 'user'")


class SpeechParams(BaseModel):
    gen_text: str = Field(min_length=1, description="Text to speak")
    ref_audio: str = Field(description="URL of a reference voice sample")
    ref_text: str = Field("", description="Transcript of the reference sample")


class Model3dParams(BaseModel):
    image: str = Field(description="URL of the source image")
    seed: int = Field(0, ge=0)
    ss_sampling_steps: int = Field(50, ge=10, le=50)
    slat_sampling_steps: int = Field(50, ge=10, le=50)


# Reply rendering


def _header(result: TaskResult, what: str) -> str:
    return (
        f"{what} generated successfully!\n"
        f"Task ID: {result.task_id}\n"
        f"Usage: {result.usage_cost} tokens"
    )


def _render_urls(what: str) -> Callable[[TaskResult, Any], list[str]]:
    def render(result: TaskResult, urls: list[str]) -> list[str]:
        return [f"{_header(result, what)}\nURLs:\n" + "\n".join(urls)]

    return render


def _render_url(what: str) -> Callable[[TaskResult, Any], list[str]]:
    def render(result: TaskResult, url: str) -> list[str]:
        return [f"{_header(result, what)}\nURL: {url}"]

    return render


def _render_clips(result: TaskResult, clips: list[SongClip]) -> list[str]:
    blocks = [_header(result, "Music")]
    for index, clip in enumerate(clips, start=1):
        lines = [f"Clip {index}: {clip.title or 'untitled'}", f"Audio: {clip.song_path}"]
        if clip.duration is not None:
            lines.append(f"Duration: {clip.duration:g}s")
        if clip.image_path:
            lines.append(f"Cover: {clip.image_path}")
        if clip.lyrics:
            lines.append(f"Lyrics:\n{clip.lyrics}")
        blocks.append("\n".join(lines))
    return blocks


def _render_model(result: TaskResult, bundle: dict) -> list[str]:
    lines = [_header(result, "3D model"), f"Model file: {bundle['model_file']}"]
    if "combined_video" in bundle:
        lines.append(f"Preview video: {bundle['combined_video']}")
    if "no_background_image" in bundle:
        lines.append(f"Background-free image: {bundle['no_background_image']}")
    return ["\n".join(lines)]


TOOLS: dict[str, MediaTool] = {
    tool.name: tool
    for tool in (
        MediaTool(
            name="generate_image",
            description="Generate an image from text using PiAPI Flux",
            params_model=ImageParams,
            build_input=lambda p: {
                "prompt": p.prompt,
                "negative_prompt": p.negative_prompt,
                "width": p.width,
                "height": p.height,
                "batch_size": 1,
            },
            model="Qubico/flux1-schnell",
            task_type="txt2img",
            kind=MediaKind.image,
            job_config=JobConfig(max_attempts=60, timeout_seconds=240),
            render=_render_urls("Image"),
        ),
        MediaTool(
            name="midjourney_imagine",
            description="Generate a four-image grid from text using PiAPI Midjourney",
            params_model=MidjourneyParams,
            build_input=lambda p: {
                "prompt": p.prompt,
                "aspect_ratio": p.aspect_ratio,
                "process_mode": p.process_mode,
                "skip_prompt_check": False,
            },
            model="midjourney",
            task_type="imagine",
            kind=MediaKind.image,
            job_config=JobConfig(max_attempts=60, timeout_seconds=600),
            render=_render_urls("Image"),
        ),
        MediaTool(
            name="generate_video",
            description="Generate a video from text using PiAPI Hunyuan",
            params_model=VideoParams,
            build_input=lambda p: {
                "prompt": p.prompt,
                "negative_prompt": p.negative_prompt,
                "aspect_ratio": p.aspect_ratio,
            },
            model="Qubico/hunyuan",
            task_type="txt2video",
            kind=MediaKind.video,
            job_config=JobConfig(max_attempts=60, timeout_seconds=900),
            render=_render_url("Video"),
        ),
        MediaTool(
            name="generate_video_kling",
            description="Generate a video from text using PiAPI Kling",
            params_model=KlingVideoParams,
            build_input=lambda p: {
                "prompt": p.prompt,
                "negative_prompt": p.negative_prompt,
                "cfg_scale": p.cfg_scale,
                "duration": p.duration,
                "aspect_ratio": p.aspect_ratio,
                "mode": p.mode,
            },
            model="kling",
            task_type="video_generation",
            kind=MediaKind.video_assets,
            job_config=JobConfig(max_attempts=90, timeout_seconds=1800),
            render=_render_urls("Video"),
        ),
        MediaTool(
            name="generate_music",
            description="Generate music clips from a description using PiAPI Udio",
            params_model=MusicParams,
            build_input=lambda p: {
                "gpt_description_prompt": p.prompt,
                "lyrics_type": p.lyrics_type,
                "lyrics": p.lyrics,
            },
            model="music-u",
            task_type="generate_music",
            kind=MediaKind.audio_clips,
            job_config=JobConfig(max_attempts=60, timeout_seconds=600),
            render=_render_clips,
        ),
        MediaTool(
            name="text_to_speech",
            description="Speak text in the voice of a reference sample using PiAPI F5-TTS",
            params_model=SpeechParams,
            build_input=lambda p: {
                "gen_text": p.gen_text,
                "ref_audio": p.ref_audio,
                "ref_text": p.ref_text,
            },
            model="Qubico/tts",
            task_type="zero-shot",
            kind=MediaKind.audio,
            job_config=JobConfig(max_attempts=30, timeout_seconds=300),
            render=_render_url("Speech"),
        ),
        MediaTool(
            name="generate_3d_model",
            description="Generate a 3D model from an image using PiAPI Trellis",
            params_model=Model3dParams,
            build_input=lambda p: {
                "image": p.image,
                "seed": p.seed,
                "ss_sampling_steps": p.ss_sampling_steps,
                "slat_sampling_steps": p.slat_sampling_steps,
            },
            model="Qubico/trellis",
            task_type="image-to-3d",
            kind=MediaKind.model_3d,
            job_config=JobConfig(max_attempts=60, timeout_seconds=600),
            render=_render_model,
        ),
    )
}


def get_tool(name: str) -> MediaTool:
    if name not in TOOLS:
        raise KeyError(f"Tool not found: {name}")
    return TOOLS[name]


def parse_arguments(tool: MediaTool, arguments: Optional[dict]) -> BaseModel:
    try:
        return tool.params_model.model_validate(arguments or {})
    except ValidationError as e:
        details = []
        for err in e.errors():
            field = ".".join(str(part) for part in err["loc"]) or "arguments"
            details.append(f"{field}: {err['msg']}")
        raise ParameterValidationError(
            f"Invalid arguments for {tool.name}: {'; '.join(details)}"
        ) from e


async def run_tool(
    tool: MediaTool,
    arguments: Optional[dict],
    client: PiAPITaskClient,
    progress: Optional[ProgressReporter] = None,
    log: Optional[TaskLogger] = None,
) -> list[str]:
    """Run one tool invocation end to end and return its reply text blocks"""
    params = parse_arguments(tool, arguments)
    log = log or LoguruTaskLogger()

    task_id = await client.submit(tool.build_body(params, client.settings))
    await log.info(f"{tool.name}: task {task_id} submitted")

    # TaskTimeoutError is also a builtin TimeoutError and must pass through as is
    try:
        result = await client.wait_for_result(task_id, tool.job_config, progress, log)
    except MediaTaskError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise ProviderConnectionError(
            f"Lost contact with the provider while polling: {e!r}", task_id
        ) from e
    value = normalize(tool.kind, result.raw_output).unwrap(task_id)
    return tool.render(result, value)
