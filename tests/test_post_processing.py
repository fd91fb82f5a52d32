"""
Tests for background overlay, BGM mixing and ending append.
"""

import asyncio
import os
import random

import pytest

from app.config import BACKGROUND_TEMPLATE_KEYS, BGM_TEMPLATE_KEYS, ENDING_TEMPLATE_KEY
from app.errors import ExternalToolFailed, FileNotReady
from app.services.post_processing import PostProcessor, bgm_fade_window
from tests.conftest import FakeFFmpegRunner, parse_concat_list, write_file


def option_value(cmd, flag):
    return cmd[cmd.index(flag) + 1]


@pytest.fixture
def processor(scratch, mock_fetcher, fake_runner):
    return PostProcessor(
        scratch=scratch,
        fetcher=mock_fetcher,
        runner=fake_runner,
        rng=random.Random(0),
        retry_delay_seconds=0,
    )


@pytest.fixture
def final_video(scratch):
    return write_file(scratch.final_path("vid1"), b"original-final")


class TestFadeWindow:
    """Tests for the BGM fade-out placement."""

    def test_fade_ends_at_video_end(self):
        start, length = bgm_fade_window(60.0, 10.0)
        assert (start, length) == (50.0, 10.0)
        assert start + length == 60.0

    def test_short_video_fades_whole_length(self):
        assert bgm_fade_window(4.0, 10.0) == (0.0, 4.0)

    @pytest.mark.parametrize("duration", [10.0, 12.345, 300.0])
    def test_fade_window_never_passes_video_end(self, duration):
        start, length = bgm_fade_window(duration, 10.0)
        assert start >= 0
        assert round(start + length, 3) == round(duration, 3)


class TestCommands:
    """Tests for the filter graphs."""

    def test_bgm_command(self, processor):
        cmd = processor.build_bgm_command("/s/final.mp4", "/t/bgm.mp3", "/s/final.mp4.bgm.part", 60.0, 10.0)
        graph = option_value(cmd, "-filter_complex")

        assert "[1:a]volume=0.15,afade=t=out:st=50.000:d=10.000[bgm]" in graph
        assert "amix=inputs=2:duration=first:dropout_transition=0:normalize=0" in graph
        # narration enters the mix untouched
        assert graph.split(";")[1].startswith("[0:a][bgm]amix")
        assert cmd[cmd.index("/t/bgm.mp3") - 3:cmd.index("/t/bgm.mp3")] == ["-stream_loop", "-1", "-i"]
        assert option_value(cmd, "-c:v") == "copy"
        assert option_value(cmd, "-t") == "60.000"
        assert cmd[cmd.index("-map") + 1] == "0:v"

    def test_background_command(self, processor):
        cmd = processor.build_background_command("/s/final.mp4", "/t/bg.mp4", "/s/out.part", 42.5)
        graph = option_value(cmd, "-filter_complex")

        assert "[0:v]scale=1920:1080" in graph
        assert "[1:v]scale=1280:720" in graph
        assert "overlay=(W-w)/2:(H-h)/2" in graph
        assert cmd[cmd.index("/t/bg.mp4") - 3:cmd.index("/t/bg.mp4")] == ["-stream_loop", "-1", "-i"]
        assert "1:a?" in cmd
        assert option_value(cmd, "-t") == "42.500"
        assert option_value(cmd, "-crf") == "28"

    def test_crossfade_command(self, processor):
        cmd = processor.build_crossfade_command("/s/final.mp4", "/t/ending.mp4", "/s/out.part", 30.0)
        graph = option_value(cmd, "-filter_complex")

        assert "xfade=transition=fade:duration=0.7:offset=29.300" in graph
        assert "acrossfade=d=0.7" in graph

    def test_crossfade_offset_never_negative(self, processor):
        cmd = processor.build_crossfade_command("/s/final.mp4", "/t/ending.mp4", "/s/out.part", 0.5)
        assert "offset=0.000" in option_value(cmd, "-filter_complex")


class TestTransforms:
    """Tests for in-place replacement of the final video."""

    def test_background_replaces_final(self, processor, final_video, scratch, mock_fetcher, fake_runner):
        expected_key = random.Random(0).choice(BACKGROUND_TEMPLATE_KEYS)

        result = asyncio.run(processor.overlay_background("vid1"))

        assert result == final_video
        with open(final_video, "rb") as f:
            assert f.read() == b"rendered"
        assert mock_fetcher.ensure_cached.await_args.args[1] == scratch.template_path(expected_key)
        assert fake_runner.ffmpeg_commands[-1][-1] == final_video + ".bg.part"
        assert os.listdir(scratch.job_dir("vid1")) == ["vid1.mp4"]

    def test_explicit_template_key(self, processor, final_video, mock_fetcher):
        asyncio.run(processor.mix_bgm("vid1", template_key=BGM_TEMPLATE_KEYS[2]))

        assert mock_fetcher.ensure_cached.await_args.args[0].endswith(BGM_TEMPLATE_KEYS[2])

    def test_bgm_uses_probed_duration(self, scratch, mock_fetcher, final_video):
        runner = FakeFFmpegRunner(durations={final_video: 95.5})
        processor = PostProcessor(scratch=scratch, fetcher=mock_fetcher, runner=runner, retry_delay_seconds=0)

        asyncio.run(processor.mix_bgm("vid1"))

        graph = option_value(runner.ffmpeg_commands[-1], "-filter_complex")
        assert "afade=t=out:st=85.500:d=10.000" in graph

    def test_missing_final_video(self, processor, fake_runner):
        with pytest.raises(FileNotReady):
            asyncio.run(processor.overlay_background("vid1"))
        assert fake_runner.commands == []

    def test_failure_leaves_final_untouched(self, scratch, mock_fetcher, final_video):
        runner = FakeFFmpegRunner(fail_when=lambda cmd: cmd[0] == "ffmpeg")
        processor = PostProcessor(scratch=scratch, fetcher=mock_fetcher, runner=runner, retry_delay_seconds=0)

        with pytest.raises(ExternalToolFailed):
            asyncio.run(processor.mix_bgm("vid1"))

        with open(final_video, "rb") as f:
            assert f.read() == b"original-final"
        assert len(runner.ffmpeg_commands) == 3
        assert os.listdir(scratch.job_dir("vid1")) == ["vid1.mp4"]

    def test_ending_concat_appends_clip(self, processor, final_video, scratch, fake_runner):
        ending_cache = scratch.template_path(ENDING_TEMPLATE_KEY)

        asyncio.run(processor.append_ending("vid1"))

        with open(final_video, "rb") as f:
            content = f.read()
        assert content.startswith(b"original-final")
        assert content.endswith(f"template:http://storage.test/projects/{ENDING_TEMPLATE_KEY}".encode())
        assert os.listdir(scratch.job_dir("vid1")) == ["vid1.mp4"]
        assert os.path.exists(ending_cache)

    def test_ending_concat_list_order(self, scratch, mock_fetcher, final_video):
        seen = []

        class RecordingRunner(FakeFFmpegRunner):
            async def run(self, cmd):
                if "concat" in cmd:
                    seen.append(parse_concat_list(cmd[cmd.index("-i") + 1]))
                return await super().run(cmd)

        processor = PostProcessor(scratch=scratch, fetcher=mock_fetcher, runner=RecordingRunner())
        asyncio.run(processor.append_ending("vid1"))

        assert seen == [[final_video, scratch.template_path(ENDING_TEMPLATE_KEY)]]

    def test_ending_crossfade_reencodes(self, processor, final_video, fake_runner):
        asyncio.run(processor.append_ending("vid1", crossfade=True))

        cmd = fake_runner.ffmpeg_commands[-1]
        assert "xfade" in option_value(cmd, "-filter_complex")
        assert cmd[-1] == final_video + ".ending.part"
