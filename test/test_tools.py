import dataclasses

import aiohttp
import pytest
from conftest import RecordingProgress
from piapi_mcp.config import Settings
from piapi_mcp.errors import (
    GenerationFailedError,
    MalformedOutputError,
    NoResultError,
    ParameterValidationError,
    ProviderConnectionError,
    TaskTimeoutError,
)
from piapi_mcp.models import JobConfig
from piapi_mcp.tools import TOOLS, get_tool, parse_arguments, run_tool


def fast(tool):
    """Same tool with a tiny polling budget."""
    return dataclasses.replace(
        tool, job_config=JobConfig(max_attempts=3, timeout_seconds=0.3)
    )


def test_every_tool_declares_an_object_schema():
    for name, tool in TOOLS.items():
        schema = tool.input_schema()
        assert schema["type"] == "object"
        assert tool.name == name
        assert tool.description


def test_get_unknown_tool():
    with pytest.raises(KeyError):
        get_tool("generate_hologram")


def test_numeric_strings_are_coerced():
    params = parse_arguments(
        get_tool("generate_image"), {"prompt": "cat", "width": "512", "height": 256}
    )

    assert params.width == 512
    assert params.height == 256


def test_defaults_are_applied():
    params = parse_arguments(get_tool("generate_image"), {"prompt": "cat"})

    assert (params.width, params.height, params.negative_prompt) == (1024, 1024, "")


@pytest.mark.parametrize(
    "name, arguments",
    [
        ("generate_image", {"prompt": "cat", "width": 2048}),
        ("generate_image", {"prompt": "cat", "height": "tall"}),
        ("generate_image", {}),
        ("generate_video_kling", {"prompt": "cat", "duration": 7}),
        ("generate_video_kling", {"prompt": "cat", "cfg_scale": 1.5}),
        ("generate_music", {"prompt": "jazz", "lyrics_type": "spoken"}),
        ("generate_3d_model", {"image": "https://x/cat.png", "ss_sampling_steps": 5}),
    ],
)
def test_invalid_arguments(name, arguments):
    with pytest.raises(ParameterValidationError, match=name):
        parse_arguments(get_tool(name), arguments)


def test_request_body_shape():
    tool = get_tool("generate_image")
    settings = Settings(
        api_key="k", webhook_endpoint="https://hook", webhook_secret="s"
    )

    body = tool.build_body(parse_arguments(tool, {"prompt": "cat", "width": 512}), settings)

    assert body == {
        "model": "Qubico/flux1-schnell",
        "task_type": "txt2img",
        "input": {
            "prompt": "cat",
            "negative_prompt": "",
            "width": 512,
            "height": 1024,
            "batch_size": 1,
        },
        "config": {
            "service_mode": "public",
            "webhook_config": {"endpoint": "https://hook", "secret": "s"},
        },
    }


@pytest.mark.asyncio
async def test_generate_image(make_client):
    provider, client, _ = await make_client(
        statuses=[
            {"status": "processing"},
            {
                "status": "completed",
                "output": {"image_url": "https://img/a.png", "image_urls": ["https://img/b.png"]},
                "meta": {"usage": {"consume": "3"}},
            },
        ]
    )
    progress = RecordingProgress()

    blocks = await run_tool(
        fast(get_tool("generate_image")), {"prompt": "cat"}, client, progress
    )

    assert blocks == [
        "Image generated successfully!\n"
        "Task ID: t1\n"
        "Usage: 3 tokens\n"
        "URLs:\nhttps://img/a.png\nhttps://img/b.png"
    ]
    assert provider.submitted[0]["input"]["prompt"] == "cat"
    assert progress.values[-1] == 100


@pytest.mark.asyncio
async def test_midjourney_uses_temporary_urls(make_client):
    _, client, _ = await make_client(
        statuses=[
            {
                "status": "completed",
                "output": {"image_urls": None, "temporary_image_urls": ["https://tmp/1.png"]},
            }
        ]
    )

    blocks = await run_tool(fast(get_tool("midjourney_imagine")), {"prompt": "cat"}, client)

    assert blocks[0].endswith("URLs:\nhttps://tmp/1.png")
    assert "Usage: unknown tokens" in blocks[0]


@pytest.mark.asyncio
async def test_generate_music_returns_one_block_per_clip(make_client):
    _, client, _ = await make_client(
        statuses=[
            {
                "status": "completed",
                "output": {
                    "songs": [
                        {"song_path": "https://a/1.mp3", "title": "First", "duration": 30},
                        {"song_path": "https://a/2.mp3", "lyrics": "la la"},
                    ]
                },
            }
        ]
    )

    blocks = await run_tool(fast(get_tool("generate_music")), {"prompt": "jazz"}, client)

    assert len(blocks) == 3
    assert blocks[1] == "Clip 1: First\nAudio: https://a/1.mp3\nDuration: 30s"
    assert blocks[2] == "Clip 2: untitled\nAudio: https://a/2.mp3\nLyrics:\nla la"


@pytest.mark.asyncio
async def test_generate_3d_model(make_client):
    _, client, _ = await make_client(
        statuses=[
            {
                "status": "completed",
                "output": {"model_file": "https://m/cat.glb", "combined_video": "https://m/cat.mp4"},
            }
        ]
    )

    blocks = await run_tool(
        fast(get_tool("generate_3d_model")), {"image": "https://x/cat.png", "seed": "7"}, client
    )

    assert "Model file: https://m/cat.glb" in blocks[0]
    assert "Preview video: https://m/cat.mp4" in blocks[0]


@pytest.mark.asyncio
async def test_invalid_arguments_never_reach_the_provider(make_client):
    provider, client, _ = await make_client()

    with pytest.raises(ParameterValidationError):
        await run_tool(get_tool("generate_image"), {"prompt": "cat", "width": 64}, client)

    assert provider.submitted == []


@pytest.mark.asyncio
async def test_malformed_output_names_the_task(make_client):
    _, client, _ = await make_client(
        statuses=[{"status": "completed", "output": {"url": "https://v"}}]
    )

    with pytest.raises(MalformedOutputError, match="Task t1"):
        await run_tool(fast(get_tool("generate_video")), {"prompt": "cat"}, client)


@pytest.mark.asyncio
async def test_empty_image_output_is_no_result(make_client):
    _, client, _ = await make_client(statuses=[{"status": "completed", "output": {}}])

    with pytest.raises(NoResultError, match="Task t1"):
        await run_tool(fast(get_tool("generate_image")), {"prompt": "cat"}, client)


@pytest.mark.asyncio
async def test_generation_failure_is_caller_visible(make_client):
    _, client, _ = await make_client(
        statuses=[{"status": "failed", "error": {"message": "quota exceeded"}}]
    )

    arguments = {"gen_text": "hi", "ref_audio": "https://a/voice.wav"}
    with pytest.raises(GenerationFailedError, match="Task t1: Generation failed: quota"):
        await run_tool(fast(get_tool("text_to_speech")), arguments, client)


@pytest.mark.asyncio
async def test_connection_lost_while_polling_names_the_task(make_client):
    _, client, _ = await make_client()
    request_json = client._request_json

    async def drop_status_checks(method, url, payload=None):
        if method == "GET":
            raise aiohttp.ClientConnectionError("connection reset")
        return await request_json(method, url, payload)

    client._request_json = drop_status_checks

    with pytest.raises(ProviderConnectionError, match="Task t1") as exc_info:
        await run_tool(fast(get_tool("generate_video")), {"prompt": "cat"}, client)

    assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)


@pytest.mark.asyncio
async def test_polling_timeout_is_not_reported_as_lost_connection(make_client):
    _, client, _ = await make_client(statuses=[{"status": "processing"}])

    with pytest.raises(TaskTimeoutError, match="Task t1"):
        await run_tool(fast(get_tool("generate_video")), {"prompt": "cat"}, client)
