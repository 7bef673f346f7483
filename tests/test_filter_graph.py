from pathlib import Path

import pytest

from conftest import filter_complex, make_audio, make_video, mapped
from stitcher.errors import GraphBuildError
from stitcher.generators import filter_graph
from stitcher.models import AssetKind, MediaAsset, OverlaySpec

OUT = Path("/tmp/out.mp4")


class TestConcat:
    def test_mixed_audio_fills_silence(self):
        videos = [make_video("a.mp4", has_audio=True), make_video("b.mp4", duration=7.5, has_audio=False)]
        graph = filter_graph.build_concat_graph(videos, OUT)
        args = graph.compile()

        silence = args.index(filter_graph.SILENCE_SOURCE)
        assert args[silence - 5 : silence] == ["-f", "lavfi", "-t", "7.5", "-i"]
        assert "[1:v][1:v]" not in filter_complex(args)
        assert "concat=a=1:n=2:v=1" in filter_complex(args)
        assert len(mapped(args)) == 2
        assert graph.has_audio
        assert "anullsrc[1]" in graph.stages
        assert graph.expected_duration == 17.5

    def test_no_audio_anywhere_is_video_only(self):
        videos = [make_video("a.mp4", has_audio=False), make_video("b.mp4", has_audio=False)]
        graph = filter_graph.build_concat_graph(videos, OUT)
        args = graph.compile()

        assert "[0:v][1:v]concat=a=0:n=2:v=1" in filter_complex(args)
        assert len(mapped(args)) == 1
        assert not graph.has_audio

    def test_all_audio(self):
        videos = [make_video(f"{i}.mp4") for i in range(3)]
        args = filter_graph.build_concat_graph(videos, OUT).compile()
        assert "[0:v][0:a][1:v][1:a][2:v][2:a]concat=a=1:n=3:v=1" in filter_complex(args)

    def test_needs_two_videos(self):
        with pytest.raises(GraphBuildError):
            filter_graph.build_concat_graph([make_video()], OUT)

    def test_unprobed_video_rejected(self):
        unprobed = MediaAsset(local_path=Path("/tmp/x.mp4"), kind=AssetKind.VIDEO)
        with pytest.raises(GraphBuildError):
            filter_graph.build_concat_graph([make_video(), unprobed], OUT)


class TestAudioAttach:
    def test_video_with_audio_is_mixed_and_copied(self):
        graph = filter_graph.build_audio_graph(make_video(duration=12.0), make_audio(duration=20.0), OUT)
        args = graph.compile()
        graph_text = filter_complex(args)

        assert "volume=-2.0dB" in graph_text
        assert "amix=duration=shortest:inputs=2" in graph_text
        assert args[args.index("-vcodec") + 1] == "copy"
        assert args[args.index("-acodec") + 1] == "aac"
        assert mapped(args)[0] == "0:v:0"
        assert graph.expected_duration == 12.0

    def test_video_without_audio_takes_music_only(self):
        graph = filter_graph.build_audio_graph(make_video(has_audio=False), make_audio(), OUT)
        args = graph.compile()

        assert "-filter_complex" not in args
        assert mapped(args) == ["0:v:0", "1:a:0"]
        assert args[args.index("-acodec") + 1] == "aac"
        assert args[args.index("-vcodec") + 1] == "copy"

    def test_unknown_music_duration(self):
        music = MediaAsset(local_path=Path("/tmp/m.mp3"), kind=AssetKind.AUDIO)
        with pytest.raises(GraphBuildError):
            filter_graph.build_audio_graph(make_video(), music, OUT)


class TestOverlay:
    def test_overlay_reencodes_video_and_keeps_mix(self, tmp_path):
        logo = tmp_path / "logo.png"
        logo.write_bytes(b"png")
        graph = filter_graph.build_audio_graph(
            make_video(), make_audio(), OUT, overlay=OverlaySpec(), overlay_path=logo
        )
        args = graph.compile()
        graph_text = filter_complex(args)

        assert "scale=150:-1" in graph_text
        assert "overlay=eof_action=repeat:format=auto:x=W-w-20:y=H-h-20" in graph_text
        assert "format=yuv420p" in graph_text
        assert "amix" in graph_text
        assert args[args.index("-vcodec") + 1] == "libx264"
        assert len(mapped(args)) == 2
        assert graph.topology == "overlay"

    def test_overlay_does_not_change_audio_mapping(self, tmp_path):
        logo = tmp_path / "logo.png"
        logo.write_bytes(b"png")
        video = make_video(has_audio=False)
        plain = filter_graph.build_audio_graph(video, make_audio(), OUT)
        overlaid = filter_graph.build_audio_graph(
            video, make_audio(), OUT, overlay=OverlaySpec(anchor="top-left"), overlay_path=logo
        )
        assert plain.audio_label == overlaid.audio_label
        assert "x=20:y=20" in filter_complex(overlaid.compile())

    def test_missing_overlay_file_fails_fast(self, tmp_path):
        with pytest.raises(GraphBuildError):
            filter_graph.build_audio_graph(
                make_video(), make_audio(), OUT, overlay=OverlaySpec(), overlay_path=tmp_path / "missing.png"
            )


def test_audio_replace_short_form():
    graph = filter_graph.build_audio_replace_graph(make_video(), make_audio(), OUT)
    args = graph.compile()
    graph_text = filter_complex(args)

    assert "atrim=duration=5.0:start=0" in graph_text
    assert "afade=d=0.5:st=0:t=in" in graph_text
    assert "afade=d=0.5:st=4.5:t=out" in graph_text
    assert mapped(args)[0] == "0:v:0"
    assert args[args.index("-vcodec") + 1] == "copy"
    assert args[args.index("-acodec") + 1] == "aac"
