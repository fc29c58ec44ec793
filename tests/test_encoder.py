"""Tests for ffmpeg command construction, progress parsing and the process runner."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from factories import image_source, make_clip, make_timeline, sequential_clips, sources_for, video_source
from reel_render.exceptions import EncoderError
from reel_render.render.compiler import compile_timeline
from reel_render.render.encoder import (
    FfmpegRunner,
    atempo_chain,
    build_chunk_command,
    build_export_command,
    build_speed_ramp_command,
    parse_progress_line,
    progress_percent,
)

BASE = ["ffmpeg", "-y", "-hide_banner", "-nostats", "-progress", "pipe:1"]


def arg_after(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


class TestExportCommand:
    @pytest.fixture
    def compiled(self, render_config):
        clips = sequential_clips(5.0, 5.0)
        return compile_timeline(make_timeline(clips), sources_for(clips), render_config)

    def test_command_layout(self, compiled, settings):
        cmd = build_export_command(compiled, "/tmp/out.mp4", settings)

        assert cmd[:6] == BASE
        assert cmd[-1] == "/tmp/out.mp4"
        assert arg_after(cmd, "-filter_complex") == compiled.filter_complex
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[v_final]", "[a_mixed]"]

    def test_final_profile(self, compiled, settings):
        cmd = build_export_command(compiled, "/tmp/out.mp4", settings)

        assert arg_after(cmd, "-c:v") == "libx264"
        assert arg_after(cmd, "-preset") == "medium"
        assert arg_after(cmd, "-crf") == "18"
        assert arg_after(cmd, "-maxrate") == "15M"
        assert arg_after(cmd, "-bufsize") == "30M"
        assert arg_after(cmd, "-profile:v") == "high"
        assert arg_after(cmd, "-level") == "4.2"
        assert arg_after(cmd, "-pix_fmt") == "yuv420p"
        assert arg_after(cmd, "-g") == "60"
        assert arg_after(cmd, "-movflags") == "+faststart"
        assert arg_after(cmd, "-c:a") == "aac"
        assert arg_after(cmd, "-b:a") == "320k"
        assert arg_after(cmd, "-ar") == "48000"
        assert arg_after(cmd, "-ac") == "2"

    def test_inputs_precede_filter_complex(self, compiled, settings):
        cmd = build_export_command(compiled, "/tmp/out.mp4", settings)
        first_input = cmd.index("-i")
        assert cmd[first_input + 1] == "/media/media-c0.mp4"
        assert first_input < cmd.index("-filter_complex")

    def test_image_input_is_looped(self, render_config, settings):
        clip = make_clip("c0", 0, 3)
        compiled = compile_timeline(make_timeline([clip]), {clip.media_file_id: image_source()}, render_config)
        cmd = build_export_command(compiled, "/tmp/out.mp4", settings)
        i = cmd.index("-i")
        assert cmd[i - 4:i] == ["-loop", "1", "-t", "3.5"]


class TestChunkCommand:
    def test_intermediate_profile_with_limiter(self, settings):
        cmd = build_chunk_command(make_clip("c0", 1, 4), video_source(), "/tmp/chunk.mov", settings)

        assert cmd[:6] == BASE
        assert arg_after(cmd, "-c:v") == "prores_ks"
        assert arg_after(cmd, "-profile:v") == "3"
        assert arg_after(cmd, "-pix_fmt") == "yuv422p10le"
        assert arg_after(cmd, "-vendor") == "ap10"
        assert arg_after(cmd, "-vsync") == "cfr"
        assert arg_after(cmd, "-r") == "30"
        assert arg_after(cmd, "-c:a") == "pcm_s16le"
        graph = arg_after(cmd, "-filter_complex")
        assert "[a0]alimiter=limit=0.95:attack=5:release=50:asc=1[a_out]" in graph
        assert [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"] == ["[v0]", "[a_out]"]


class TestSpeedRamp:
    @pytest.mark.parametrize(
        "speed,expected",
        [
            (1.0, [1.0]),
            (0.5, [0.5]),
            (2.0, [2.0]),
            (0.25, [0.5, 0.5]),
            (4.0, [2.0, 2.0]),
            (3.0, [2.0, 1.5]),
            (0.3, [0.5, 0.6]),
        ],
    )
    def test_atempo_chain(self, speed, expected):
        assert atempo_chain(speed) == pytest.approx(expected)

    @pytest.mark.parametrize("speed", [0.1, 0.2, 0.75, 1.5, 5.0, 10.0])
    def test_atempo_stages_stay_in_range_and_multiply_to_speed(self, speed):
        stages = atempo_chain(speed)
        product = 1.0
        for stage in stages:
            assert 0.5 <= stage <= 2.0
            product *= stage
        assert product == pytest.approx(speed)

    def test_atempo_rejects_non_positive_speed(self):
        with pytest.raises(ValueError):
            atempo_chain(0)

    def test_command_with_audio(self, settings):
        cmd = build_speed_ramp_command("/in.mp4", "/out.mp4", 60, 0.5, has_audio=True, settings=settings)

        assert cmd[:6] == BASE
        assert arg_after(cmd, "-i") == "/in.mp4"
        assert arg_after(cmd, "-vf") == (
            "minterpolate=fps=60:mi_mode=mci:mc_mode=aobmc:me_mode=bidir:vsbmc=1:scd=fdiff,setpts=2.00*PTS"
        )
        assert arg_after(cmd, "-af") == "atempo=0.5,volume=0.98,aresample=48000:async=1"
        assert arg_after(cmd, "-max_muxing_queue_size") == "9999"
        assert arg_after(cmd, "-c:a") == "aac"
        assert int(arg_after(cmd, "-threads")) >= 1
        assert cmd[-1] == "/out.mp4"

    def test_command_without_audio(self, settings):
        cmd = build_speed_ramp_command("/in.mp4", "/out.mp4", 30, 2.0, has_audio=False, settings=settings)

        assert "-an" in cmd
        assert "-af" not in cmd
        assert "-c:a" not in cmd
        assert arg_after(cmd, "-vf").endswith("setpts=0.50*PTS")


class TestProgressParsing:
    @pytest.mark.parametrize(
        "line,expected",
        [
            ("out_time_us=1500000", 1.5),
            ("out_time_ms=2000000", 2.0),
            ("out_time=00:01:02.500000", 62.5),
            ("out_time_us=N/A", None),
            ("frame=120", None),
            ("progress=continue", None),
            ("garbage", None),
        ],
    )
    def test_parse_progress_line(self, line, expected):
        assert parse_progress_line(line) == expected

    def test_percent_clamped_below_100(self):
        assert progress_percent(5, 10) == 50
        assert progress_percent(20, 10) == 99
        assert progress_percent(-1, 10) == 0

    def test_percent_unknown_without_expected_duration(self):
        assert progress_percent(1, 0) is None


class TestFfmpegRunner:
    @pytest.mark.asyncio
    async def test_reports_progress(self, settings, fake_process):
        proc = fake_process(
            stdout_lines=[
                b"frame=1\n",
                b"out_time_us=2500000\n",
                b"progress=continue\n",
                b"out_time_us=7500000\n",
                b"out_time_us=12000000\n",
                b"progress=end\n",
            ]
        )
        seen: list[float] = []
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            await FfmpegRunner(settings).run(["ffmpeg"], 10.0, seen.append)

        assert seen == [25.0, 75.0, 99.0]

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_stderr_tail(self, settings, fake_process):
        proc = fake_process(
            stderr_lines=[b"Input #0, mov\n", b"[xfade] Invalid offset\n", b"Conversion failed!\n"],
            returncode=1,
        )
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(EncoderError) as exc_info:
                await FfmpegRunner(settings).run(["ffmpeg"], 10.0)

        assert exc_info.value.returncode == 1
        assert "Conversion failed!" in exc_info.value.message
        assert "Invalid offset" in exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_missing_binary_raises_encoder_error(self, settings):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("ffmpeg"))):
            with pytest.raises(EncoderError, match="could not be started"):
                await FfmpegRunner(settings).run(["ffmpeg"], 10.0)

    @pytest.mark.asyncio
    async def test_cancellation_terminates_process(self, settings, fake_process):
        proc = fake_process(stdout_lines=[b"out_time_us=1000000\n"], hang=True)
        seen: list[float] = []
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            task = asyncio.create_task(FfmpegRunner(settings).run(["ffmpeg"], 10.0, seen.append))
            while not seen:
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert proc.terminated
        assert not proc.killed
