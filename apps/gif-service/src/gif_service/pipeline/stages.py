"""
Stage specifications and the fixed decode/encode command templates.

Decode: ffmpeg reads the container from stdin and writes yuv4mpegpipe frames.
Encode: gifski reads yuv4mpegpipe frames from stdin and writes GIF bytes.

The source URL never appears in a command line; the fetcher pipes the video
into the decode stage's stdin.
"""

from __future__ import annotations

from dataclasses import dataclass

from gif_service.config.settings import ServiceSettings

DECODE_STAGE = "decode"
ENCODE_STAGE = "encode"

# GIF header magic, "GIF87a" or "GIF89a"
GIF_MAGIC_PREFIX = b"GIF8"


@dataclass(frozen=True)
class StageSpec:
    """One external transcoding stage.

    Attributes:
        name: Stage name used in logs, metrics and errors
        executable: Program to run (resolved on PATH)
        args: Arguments after the executable
        final: True if stdout is the payload sent to the client
    """

    name: str
    executable: str
    args: tuple[str, ...] = ()
    final: bool = False

    @property
    def argv(self) -> list[str]:
        """Full command line."""
        return [self.executable, *self.args]


def decode_stage_spec(settings: ServiceSettings) -> StageSpec:
    """ffmpeg: container on stdin -> yuv4mpegpipe on stdout."""
    # -hide_banner -loglevel error: keep stderr to real problems
    # -i pipe:0: input from stdin, format auto-detected
    # -f yuv4mpegpipe pipe:1: raw frames with a y4m header on stdout
    return StageSpec(
        name=DECODE_STAGE,
        executable=settings.decoder_binary,
        args=(
            "-hide_banner",
            "-loglevel", "error",
            "-i", "pipe:0",
            "-f", "yuv4mpegpipe",
            "pipe:1",
        ),
    )


def encode_stage_spec(settings: ServiceSettings) -> StageSpec:
    """gifski: yuv4mpegpipe on stdin -> GIF on stdout."""
    args: list[str] = ["--output", "-"]
    if settings.encoder_fast:
        args.append("--fast")
    if settings.encoder_quality is not None:
        args.extend(["--quality", str(settings.encoder_quality)])
    if settings.encoder_fps is not None:
        args.extend(["--fps", f"{settings.encoder_fps:g}"])
    if settings.encoder_width is not None:
        args.extend(["--width", str(settings.encoder_width)])
    args.append("-")  # read frames from stdin

    return StageSpec(
        name=ENCODE_STAGE,
        executable=settings.encoder_binary,
        args=tuple(args),
        final=True,
    )


def build_stage_specs(settings: ServiceSettings) -> tuple[StageSpec, StageSpec]:
    """Decode and encode specs, in pipeline order."""
    return decode_stage_spec(settings), encode_stage_spec(settings)
