"""Tests for text fitting, colour selection, audio levels and frame rendering."""

import dataclasses
import os
import wave
from pathlib import Path
from unittest.mock import AsyncMock, patch

import numpy as np
import pytest
from PIL import Image

from clipworks.render import frame_engine as engine_module
from clipworks.render.audio_levels import band_rms, frame_count, frame_levels, load_wav_samples
from clipworks.render.frame_engine import FrameSynthesisEngine
from clipworks.render.frame_renderer import (
    FrameInput,
    build_frame_assets,
    placeholder_artwork,
    render_frame,
    waveform_outline,
)
from clipworks.render.palette import (
    FALLBACK_COLOR,
    dominant_color,
    gradient_stops,
    hex_to_rgb,
    resolve_base_color,
    vertical_gradient,
)
from clipworks.render.text import truncate_middle, wrap_caption, wrap_two_lines
from clipworks.services.subtitles import Subtitle

RED = (200, 30, 30)


def write_wav(path: str, seconds: float = 1.0, rate: int = 8000, amplitude: float = 0.5) -> None:
    t = np.arange(int(seconds * rate)) / rate
    samples = (np.sin(2 * np.pi * 220 * t) * amplitude * 32767).astype("<i2")
    with wave.open(path, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(samples.tobytes())


@pytest.fixture
def assets():
    return build_frame_assets(
        width=720,
        height=720,
        artwork=Image.new("RGB", (300, 300), RED),
        watermark=None,
        base_color=RED,
        creator="The Show",
        episode_title="Episode 42: Everything you wanted to know about clips",
        subtitles=[Subtitle(1.0, 2.0, "Hello there")],
    )


class TestText:
    def test_truncate_middle_keeps_more_of_the_start(self):
        assert truncate_middle("abcdefghij", 8) == "abc...ij"

    def test_truncate_middle_leaves_short_text(self):
        assert truncate_middle("short", 30) == "short"

    def test_truncate_middle_respects_limit(self):
        text = "A Very Long Podcast Creator Name That Keeps Going"
        assert len(truncate_middle(text, 30)) <= 30

    def test_wrap_two_lines_splits_at_last_space(self):
        text = "Episode 42: Everything you wanted to know about clips"
        first, second = wrap_two_lines(text, 40)
        assert len(first) <= 40
        assert f"{first} {second}" == text

    def test_wrap_two_lines_short_text(self):
        assert wrap_two_lines("short title") == ["short title"]

    def test_wrap_caption(self):
        assert wrap_caption("one two three four", 9) == ["one two", "three", "four"]


class TestPalette:
    """Tests for dominant colour and gradients."""

    def test_dominant_vibrant_color(self):
        image = Image.new("RGB", (100, 100), (128, 128, 128))
        image.paste(Image.new("RGB", (100, 40), RED), (0, 0))
        assert dominant_color(image) == RED

    def test_grey_artwork_falls_back(self):
        assert dominant_color(Image.new("RGB", (50, 50), (90, 90, 90))) == FALLBACK_COLOR

    def test_brown_is_not_vibrant(self):
        assert dominant_color(Image.new("RGB", (50, 50), (120, 80, 40))) == FALLBACK_COLOR

    def test_no_artwork_falls_back(self):
        assert dominant_color(None) == FALLBACK_COLOR

    def test_creator_override_wins(self):
        artwork = Image.new("RGB", (10, 10), RED)
        assert resolve_base_color("The Show", artwork, {"the show": "#00ff00"}) == (0, 255, 0)
        assert resolve_base_color("Other", artwork, {"the show": "#00ff00"}) == RED

    def test_hex_to_rgb_short_form(self):
        assert hex_to_rgb("#fa0") == (255, 170, 0)

    def test_gradient_stops_clip(self):
        assert gradient_stops((10, 240, 100)) == ((50, 255, 140), (10, 240, 100), (0, 200, 60))

    def test_vertical_gradient_endpoints(self):
        stops = ((240, 70, 70), RED, (160, 0, 0))
        image = vertical_gradient(4, 101, stops)
        assert image.getpixel((0, 0)) == stops[0]
        assert image.getpixel((0, 50)) == RED
        assert image.getpixel((3, 100)) == stops[2]


class TestAudioLevels:
    def test_load_wav_samples(self, tmp_path):
        path = str(tmp_path / "a.wav")
        write_wav(path, seconds=0.5, rate=8000)
        samples, rate = load_wav_samples(path)
        assert rate == 8000
        assert len(samples) == 4000
        assert np.abs(samples).max() <= 1.0

    def test_frame_count(self):
        assert frame_count(30.0, 30) == 900
        assert frame_count(0.01, 30) == 1

    def test_band_rms_of_constant_signal(self):
        assert np.allclose(band_rms(np.full(640, 0.5, dtype=np.float32), 64), 0.5)

    def test_frame_levels_shape_and_trailing_silence(self):
        samples = np.full(1000, 0.25, dtype=np.float32)
        levels = frame_levels(samples, 3, 4)
        assert len(levels) == 3
        assert all(level.shape == (4,) for level in levels)
        assert np.allclose(levels[0], 0.25)


class TestRenderFrame:
    """render_frame is a pure function of its inputs."""

    def test_same_inputs_same_pixels(self, assets):
        frame = FrameInput(index=0, time_s=0.0, levels=np.full(64, 0.3, dtype=np.float32))
        assert render_frame(frame, assets).tobytes() == render_frame(frame, assets).tobytes()

    def test_canvas_size(self, assets):
        frame = FrameInput(index=0, time_s=0.0, levels=np.zeros(64, dtype=np.float32))
        assert render_frame(frame, assets).size == (720, 720)

    def test_loud_frame_fills_waveform_band(self, assets):
        loud = FrameInput(index=0, time_s=0.0, levels=np.full(64, 0.5, dtype=np.float32))
        silent = FrameInput(index=0, time_s=0.0, levels=np.zeros(64, dtype=np.float32))
        probe = (360, int(assets.wave_center_y - assets.max_wave_height / 2))

        assert render_frame(loud, assets).getpixel(probe) != (0, 0, 0)
        assert render_frame(silent, assets).getpixel(probe) == (0, 0, 0)

    def test_caption_drawn_only_while_subtitle_active(self, assets):
        # Loud frame so the caption box sits over the filled waveform
        levels = np.full(64, 0.5, dtype=np.float32)
        probe = (360, 680)
        with_caption = render_frame(FrameInput(index=45, time_s=1.5, levels=levels), assets)
        without = render_frame(FrameInput(index=90, time_s=3.0, levels=levels), assets)

        assert with_caption.getpixel(probe) != without.getpixel(probe)

    def test_assets_are_immutable(self, assets):
        with pytest.raises(dataclasses.FrozenInstanceError):
            assets.title = "changed"

    def test_waveform_outline_is_mirrored(self):
        outline = waveform_outline(np.full(8, 0.2), 700, center_y=500, max_height=100)
        ys = np.array([y for _, y in outline])
        assert ys.min() < 500 < ys.max()
        assert np.isclose(500 - ys.min(), ys.max() - 500)


class TestFrameSynthesisEngine:
    @pytest.mark.asyncio
    async def test_render_produces_video_and_preview(self, settings, tmp_path):
        settings.render_fps = 5

        def fake_ffmpeg(args, **kwargs):
            output = args[-1]
            if output.endswith(".wav"):
                write_wav(output, seconds=1.0)
            else:
                Path(output).write_bytes(b"mp4")
            return b""

        engine = FrameSynthesisEngine(settings)
        output_path = str(tmp_path / "clip.mp4")
        preview_path = str(tmp_path / "preview.png")
        try:
            with patch.object(engine_module, "run_ffmpeg", AsyncMock(side_effect=fake_ffmpeg)) as run:
                result = await engine.render(
                    audio_path=str(tmp_path / "in.mp3"),
                    output_path=output_path,
                    preview_path=preview_path,
                    artwork=placeholder_artwork(),
                    creator="The Show",
                    episode_title="Episode 42",
                    subtitles=[],
                )
        finally:
            engine.close()

        assert result.frame_count == 5
        assert result.duration_s == pytest.approx(1.0)
        assert os.path.exists(output_path)
        assert Image.open(preview_path).size == (720, 720)
        mux_args = run.call_args_list[-1].args[0]
        assert "libx264" in mux_args
        assert "-shortest" in mux_args
        # Per-job working directory is removed
        assert not any(Path(settings.temp_dir).glob("video-gen-*"))
