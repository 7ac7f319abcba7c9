"""CLI 行为测试。"""

import json
from pathlib import Path

import cv2
import numpy as np
from typer.testing import CliRunner

from vlmprep.cli import app
from vlmprep.core import OperationCancelled, PipelineConfig, SceneBoundary, SceneSpan
from vlmprep.segment import SceneResult

runner = CliRunner()


def _fake_result() -> SceneResult:
    return SceneResult(
        video_id="demo",
        boundaries=[SceneBoundary(0, 0.0, "start"), SceneBoundary(4, 4.0, "distance")],
        spans=[
            SceneSpan(scene_index=0, start_frame=0, end_frame=3, start_time=0.0, end_time=4.0),
            SceneSpan(scene_index=1, start_frame=4, end_frame=9, start_time=4.0, end_time=9.0),
        ],
        frame_count=10,
        threshold=0.3,
        emb_model="stub",
        processing_seconds=0.1,
    )


def test_resolve_frames_cli(monkeypatch) -> None:
    monkeypatch.setattr("vlmprep.cli.load_config", lambda *_, **__: PipelineConfig())

    result = runner.invoke(app, ["resolve-frames", "--duration", "10", "--rate", "2", "--select", "frames:30,-1,3"])

    assert result.exit_code == 0
    payload = json.loads(next(line for line in result.stdout.splitlines() if line.startswith("[")))
    assert payload == [{"index": 3, "timestamp": 1.5}]


def test_tile_image_cli(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr("vlmprep.cli.load_config", lambda *_, **__: PipelineConfig())
    image = tmp_path / "wide.png"
    cv2.imwrite(str(image), np.zeros((64, 128, 3), dtype=np.uint8))
    output_dir = tmp_path / "tiles"

    result = runner.invoke(app, ["tile-image", str(image), "--output-dir", str(output_dir), "--tile-edge", "64"])

    assert result.exit_code == 0
    assert "网格 1x2" in result.stdout
    assert sorted(path.name for path in output_dir.iterdir()) == ["global.png", "tile_r0_c0.png", "tile_r0_c1.png"]


def test_detect_scenes_cli(monkeypatch, tmp_path: Path) -> None:
    video = tmp_path / "demo.mp4"
    video.write_bytes(b"fake")
    output = tmp_path / "out" / "scenes.json"
    captured = {}

    def fake_detect(video_path, config, **kwargs):
        captured["config"] = config
        return _fake_result()

    monkeypatch.setattr("vlmprep.cli.load_config", lambda *_, **__: PipelineConfig())
    monkeypatch.setattr("vlmprep.cli.detect_scenes", fake_detect)

    result = runner.invoke(
        app,
        [
            "detect-scenes",
            str(video),
            "--output",
            str(output),
            "--threshold",
            "0.3",
            "--reference-policy",
            "sliding",
            "--embedding-backend",
            "histogram",
        ],
    )

    assert result.exit_code == 0
    assert "Total scenes detected: 2" in result.stdout
    data = json.loads(output.read_text())
    assert data["video_id"] == "demo"
    assert [b["frame_index"] for b in data["boundaries"]] == [0, 4]
    assert captured["config"].scene.threshold == 0.3
    assert captured["config"].scene.reference_policy == "sliding"
    assert captured["config"].embedding.backend == "histogram"


def test_detect_scenes_cli_retryable_error(monkeypatch, tmp_path: Path) -> None:
    video = tmp_path / "demo.mp4"
    video.write_bytes(b"fake")

    def cancelled(*_args, **_kwargs):
        raise OperationCancelled("stopped")

    monkeypatch.setattr("vlmprep.cli.load_config", lambda *_, **__: PipelineConfig())
    monkeypatch.setattr("vlmprep.cli.detect_scenes", cancelled)

    result = runner.invoke(app, ["detect-scenes", str(video)])

    assert result.exit_code == 1
    assert "可重试" in result.output


def test_detect_scenes_cli_rejects_invalid_scene_options(monkeypatch, tmp_path: Path) -> None:
    video = tmp_path / "demo.mp4"
    video.write_bytes(b"fake")
    calls = []

    monkeypatch.setattr("vlmprep.cli.load_config", lambda *_, **__: PipelineConfig())
    monkeypatch.setattr("vlmprep.cli.detect_scenes", lambda *args, **kwargs: calls.append(args))

    for option in ["--reference-policy=drift", "--threshold=-1"]:
        result = runner.invoke(app, ["detect-scenes", str(video), option])

        assert result.exit_code == 2
        assert "场景参数非法" in result.output
        assert not isinstance(result.exception, ValueError)
    assert calls == []
