"""vlmprep Typer CLI，便于在命令行检查帧选择、切块、场景切分与模型输入。"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import cv2
import typer
from pydantic import ValidationError

from vlmprep.core import PipelineConfig, PreprocessError, SceneConfig, load_config, parse_frame_selection, setup_logging
from vlmprep.media import probe_video, resolve_frames, tile_image
from vlmprep.prompt import HuggingFaceTokenizer, UserInput, create_processor
from vlmprep.prompt.processor import PROCESSOR_REGISTRY
from vlmprep.segment import detect_scenes, format_distance_report, format_scene_report, frame_distances

app = typer.Typer(help="vlmprep 开发 CLI")


@app.callback()
def main() -> None:
    """vlmprep 顶层 CLI，占位以展示子命令列表。"""

    return None


def _resolve_config(config_path: Optional[Path]) -> PipelineConfig:
    return load_config(config_path) if config_path else load_config()


def _apply_embedding_overrides(cfg: PipelineConfig, *, backend: Optional[str], preset: Optional[str], device: Optional[str]) -> PipelineConfig:
    if not any([backend, preset, device]):
        return cfg
    updates = {}
    if backend:
        updates["backend"] = backend
    if preset:
        updates["preset"] = preset
    if device:
        updates["device"] = device
    return cfg.model_copy(update={"embedding": cfg.embedding.model_copy(update=updates)})


def _apply_scene_overrides(
    cfg: PipelineConfig,
    *,
    threshold: Optional[float],
    min_seconds: Optional[float],
    max_seconds: Optional[float],
    reference_policy: Optional[str],
) -> PipelineConfig:
    updates = {
        key: value
        for key, value in {
            "threshold": threshold,
            "min_scene_seconds": min_seconds,
            "max_scene_seconds": max_seconds,
            "reference_policy": reference_policy,
        }.items()
        if value is not None
    }
    if not updates:
        return cfg
    try:
        scene = SceneConfig.model_validate({**cfg.scene.model_dump(), **updates})
    except ValidationError as exc:
        raise typer.BadParameter(f"场景参数非法：{exc.errors()[0]['msg']}") from exc
    return cfg.model_copy(update={"scene": scene})


def _fail(exc: PreprocessError) -> typer.Exit:
    if exc.retryable:
        typer.echo(f"处理失败（可重试）：{exc}", err=True)
    else:
        typer.echo(f"内部错误，请附带输入与日志提交问题：{exc}", err=True)
    return typer.Exit(code=1)


@app.command("resolve-frames")
def resolve_frames_cmd(
    video: Optional[Path] = typer.Argument(None, exists=True, resolve_path=True, help="视频路径，用于读取时长"),
    duration: Optional[float] = typer.Option(None, "--duration", help="直接指定时长（秒），不读取视频"),
    rate: Optional[float] = typer.Option(None, "--rate", help="采样率，默认取场景配置的 sampling_fps"),
    select: str = typer.Option("all", "--select", help="帧选择：all / frames:0,10 / times:0.5,2"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="自定义配置文件"),
    log_level: str = typer.Option("INFO", "--log-level", help="日志级别"),
) -> None:
    """打印帧选择解析后的 (帧号, 时间戳) 列表。"""

    setup_logging(log_level)
    cfg = _resolve_config(config_path)
    if video is None and duration is None:
        raise typer.BadParameter("需要提供视频路径或 --duration", param_name="duration")
    try:
        seconds = duration if duration is not None else probe_video(video)[0]
        frames = resolve_frames(parse_frame_selection(select), seconds, rate or cfg.scene.sampling_fps)
    except PreprocessError as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps([frame.to_dict() for frame in frames], ensure_ascii=False))
    typer.echo(f"共 {len(frames)} 帧", err=True)


@app.command("tile-image")
def tile_image_cmd(
    image: Path = typer.Argument(..., exists=True, resolve_path=True, help="待切块图片路径"),
    output_dir: Path = typer.Option(Path("output/tiles"), "--output-dir", "-o", help="切块输出目录"),
    max_edge: Optional[int] = typer.Option(None, "--max-edge", help="覆盖配置中的最长边"),
    tile_edge: Optional[int] = typer.Option(None, "--tile-edge", help="覆盖配置中的 tile 边长"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="自定义配置文件"),
    log_level: str = typer.Option("INFO", "--log-level", help="日志级别"),
) -> None:
    """把图片切成网格并导出每个切块与全局图。"""

    setup_logging(log_level)
    budget = _resolve_config(config_path).processor.image
    pixels = cv2.imread(str(image), cv2.IMREAD_COLOR)
    if pixels is None:
        typer.echo(f"无法读取图片：{image}", err=True)
        raise typer.Exit(code=1)
    try:
        grid = tile_image(pixels, max_edge or budget.max_edge, tile_edge or budget.tile_edge, upscale=budget.upscale)
    except PreprocessError as exc:
        raise _fail(exc) from exc

    output_dir.mkdir(parents=True, exist_ok=True)
    for tile in grid.tiles:
        cv2.imwrite(str(output_dir / f"tile_r{tile.row}_c{tile.col}.png"), tile.pixels)
    cv2.imwrite(str(output_dir / "global.png"), grid.global_tile.pixels)
    typer.echo(f"网格 {grid.rows}x{grid.cols}，共 {grid.unit_count} 个视觉单元，输出到 {output_dir}")


@app.command("detect-scenes")
def detect_scenes_cmd(
    video: Path = typer.Argument(..., exists=True, resolve_path=True, help="待切分视频路径"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="场景 JSON 输出路径"),
    video_id: Optional[str] = typer.Option(None, "--video-id", help="视频 ID，默认取文件名"),
    select: str = typer.Option("all", "--select", help="帧选择：all / frames:0,10 / times:0.5,2"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="覆盖配置中的距离阈值"),
    min_seconds: Optional[float] = typer.Option(None, "--min-seconds", help="场景最短时长"),
    max_seconds: Optional[float] = typer.Option(None, "--max-seconds", help="场景最长时长"),
    reference_policy: Optional[str] = typer.Option(None, "--reference-policy", help="参考帧策略：pinned/sliding"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="自定义配置文件"),
    embedding_backend: Optional[str] = typer.Option(None, "--embedding-backend", help="覆盖 embedding backend，如 mean_color/histogram/open_clip"),
    embedding_preset: Optional[str] = typer.Option(None, "--embedding-preset", help="OpenCLIP 预设：cpu-small/gpu-large"),
    embedding_device: Optional[str] = typer.Option(None, "--embedding-device", help="指定设备，如 cpu/cuda"),
    log_level: str = typer.Option("INFO", "--log-level", help="日志级别"),
) -> None:
    """切分单个视频的场景，打印报告并导出 JSON。"""

    setup_logging(log_level)
    cfg = _resolve_config(config_path)
    cfg = _apply_embedding_overrides(cfg, backend=embedding_backend, preset=embedding_preset, device=embedding_device)
    cfg = _apply_scene_overrides(
        cfg,
        threshold=threshold,
        min_seconds=min_seconds,
        max_seconds=max_seconds,
        reference_policy=reference_policy,
    )
    try:
        result = detect_scenes(
            video,
            cfg,
            video_id=video_id or video.stem,
            selection=parse_frame_selection(select),
        )
    except PreprocessError as exc:
        raise _fail(exc) from exc

    typer.echo(format_scene_report(result))
    output = output or Path(f"scenes_{video.stem}.json")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(result.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
    typer.echo(f"生成 {len(result.boundaries)} 个场景，输出到 {output}")


@app.command("frame-distances")
def frame_distances_cmd(
    video: Path = typer.Argument(..., exists=True, resolve_path=True, help="视频路径"),
    select: str = typer.Option("all", "--select", help="帧选择：all / frames:0,10 / times:0.5,2"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="自定义配置文件"),
    embedding_backend: Optional[str] = typer.Option(None, "--embedding-backend", help="覆盖 embedding backend"),
    log_level: str = typer.Option("INFO", "--log-level", help="日志级别"),
) -> None:
    """打印每个采样帧到首帧的距离，辅助挑选阈值。"""

    setup_logging(log_level)
    cfg = _apply_embedding_overrides(_resolve_config(config_path), backend=embedding_backend, preset=None, device=None)
    try:
        report = frame_distances(video, cfg, selection=parse_frame_selection(select))
    except PreprocessError as exc:
        raise _fail(exc) from exc
    typer.echo(format_distance_report(report))


@app.command("prepare")
def prepare_cmd(
    model_id: str = typer.Argument(..., help="HuggingFace 模型 ID，用于加载分词器与聊天模板"),
    prompt: str = typer.Option("Describe this image.", "--prompt", "-p", help="用户提问"),
    image: Optional[Path] = typer.Option(None, "--image", exists=True, resolve_path=True, help="图片路径"),
    video: Optional[Path] = typer.Option(None, "--video", exists=True, resolve_path=True, help="视频路径"),
    select: str = typer.Option("all", "--select", help="视频帧选择：all / frames:0,10 / times:0.5,2"),
    variant: Optional[str] = typer.Option(None, "--variant", help="处理器类型：tiled/global"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="自定义配置文件"),
    log_level: str = typer.Option("INFO", "--log-level", help="日志级别"),
) -> None:
    """组装模型输入并打印展开后的 prompt 摘要（需要安装 vlmprep[hf]）。"""

    setup_logging(log_level)
    cfg = _resolve_config(config_path).processor
    if variant:
        if variant not in PROCESSOR_REGISTRY:
            raise typer.BadParameter(f"--variant 仅支持 {'/'.join(PROCESSOR_REGISTRY)}", param_name="variant")
        cfg = cfg.model_copy(update={"variant": variant})

    content = []
    images = []
    videos = []
    if image is not None:
        pixels = cv2.imread(str(image), cv2.IMREAD_COLOR)
        if pixels is None:
            typer.echo(f"无法读取图片：{image}", err=True)
            raise typer.Exit(code=1)
        images.append(pixels)
        content.append({"type": "image"})
    if video is not None:
        videos.append(video)
        content.append({"type": "video"})
    content.append({"type": "text", "text": prompt})

    try:
        tokenizer = HuggingFaceTokenizer(model_id)
    except RuntimeError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    try:
        processor = create_processor(cfg, tokenizer)
        model_input = processor.prepare(
            UserInput(messages=[{"role": "user", "content": content}], images=images, videos=videos),
            parse_frame_selection(select),
        )
    except PreprocessError as exc:
        raise _fail(exc) from exc

    typer.echo(model_input.prompt)
    typer.echo(f"token 数：{len(model_input.token_ids)}")
    if model_input.pixels is not None:
        typer.echo(f"像素张量：{tuple(model_input.pixels.shape)}")
    if model_input.frames:
        typer.echo("帧：" + ", ".join(f"{frame.index}@{frame.timestamp:.2f}s" for frame in model_input.frames))


if __name__ == "__main__":  # pragma: no cover
    app()
