import json
from pathlib import Path

from conftest import request_payload
from hlsfy.converter import convert, main
from hlsfy.schemas import AudioTrackInfo, OutputMetadata, Quality


class FakePipeline:
    def __init__(self, error: Exception = None) -> None:
        self.error = error
        self.requests = []

    async def run(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return OutputMetadata(
            source_duration=42.0,
            audio_tracks=[AudioTrackInfo(lang="eng")],
            qualities=[Quality(height=720, bitrate=3000)],
        )


def write_params(tmp_path: Path) -> str:
    params = tmp_path / "params.json"
    params.write_text(json.dumps(request_payload(callbackUrl="http://hook")))
    return str(params)


def test_convert_writes_result(tmp_path: Path) -> None:
    pipeline = FakePipeline()
    result = tmp_path / "output-metadata.json"

    assert convert(write_params(tmp_path), str(result), pipeline=pipeline) == 0

    assert pipeline.requests[0].callback_url == "http://hook"
    written = json.loads(result.read_text())
    assert written["sourceDuration"] == 42.0
    assert written["audioTracks"] == [{"lang": "eng", "title": None}]
    assert OutputMetadata.model_validate(written).qualities[0].height == 720


def test_convert_failure_exits_non_zero(tmp_path: Path) -> None:
    result = tmp_path / "output-metadata.json"
    assert convert(write_params(tmp_path), str(result), pipeline=FakePipeline(RuntimeError("boom"))) == 1
    assert not result.exists()


def test_convert_rejects_invalid_params(tmp_path: Path) -> None:
    params = tmp_path / "params.json"
    params.write_text('{"source": "http://x/a.mp4"}')
    assert convert(str(params), str(tmp_path / "out.json"), pipeline=FakePipeline()) == 1


def test_main_requires_two_arguments() -> None:
    assert main(["only-one"]) == 2
