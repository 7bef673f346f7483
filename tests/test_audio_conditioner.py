from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import filter_complex, make_audio
from stitcher.errors import GraphBuildError
from stitcher.generators import audio_conditioner
from stitcher.generators.audio_conditioner import AudioConditioner


@pytest.mark.parametrize("target,start", [(20.0, 18.0), (2.0, 0.0), (1.0, 0.0), (0.0, 0.0), (60.0, 58.0)])
def test_fade_out_start(target, start):
    assert audio_conditioner.fade_out_start(target) == start


def test_short_track_is_looped():
    graph = audio_conditioner.build_conditioning_graph(make_audio(duration=8.0), 20.0, Path("/tmp/out.m4a"))
    args = graph.compile()
    assert "-stream_loop" in args
    assert args[args.index("-stream_loop") + 1] == "-1"
    assert "loop" in graph.stages


def test_long_track_is_not_looped():
    graph = audio_conditioner.build_conditioning_graph(make_audio(duration=25.0), 20.0, Path("/tmp/out.m4a"))
    assert "-stream_loop" not in graph.compile()


def test_trim_and_fade_end_at_target():
    graph = audio_conditioner.build_conditioning_graph(make_audio(duration=25.0), 20.0, Path("/tmp/out.m4a"))
    args = graph.compile()
    graph_text = filter_complex(args)
    assert "atrim=duration=20.0:start=0" in graph_text
    assert "afade=d=2.0:st=18.0:t=out" in graph_text
    assert args[args.index("-t") + 1] == "20.0"
    assert graph.expected_duration == 20.0


def test_fade_clamps_to_zero_for_short_targets():
    graph = audio_conditioner.build_conditioning_graph(make_audio(duration=25.0), 1.0, Path("/tmp/out.m4a"))
    assert "afade=d=1.0:st=0.0:t=out" in filter_complex(graph.compile())


def test_zero_target_has_no_fade():
    graph = audio_conditioner.build_conditioning_graph(make_audio(duration=25.0), 0.0, Path("/tmp/out.m4a"))
    assert "afade" not in filter_complex(graph.compile())


def test_negative_or_unknown_target_rejected():
    with pytest.raises(GraphBuildError):
        audio_conditioner.build_conditioning_graph(make_audio(), -1.0, Path("/tmp/out.m4a"))
    with pytest.raises(GraphBuildError):
        audio_conditioner.build_conditioning_graph(make_audio(), None, Path("/tmp/out.m4a"))


def test_short_form_uses_symmetric_fades():
    graph = audio_conditioner.build_short_form_graph(make_audio(duration=30.0), Path("/tmp/short.m4a"))
    graph_text = filter_complex(graph.compile())
    assert "atrim=duration=5.0:start=0" in graph_text
    assert "afade=d=0.5:st=0:t=in" in graph_text
    assert "afade=d=0.5:st=4.5:t=out" in graph_text


class RecordingExecutor:
    def __init__(self):
        self.graphs = []

    async def execute(self, graph, on_progress=None):
        self.graphs.append(graph)
        return graph.output_path


async def test_condition_probes_then_executes(tmp_path):
    source = tmp_path / "music.mp3"
    executor = RecordingExecutor()
    with patch(
        "stitcher.generators.audio_conditioner.media_prober.probe_asset",
        return_value=make_audio(duration=8.0),
    ):
        result = await AudioConditioner(executor).condition(source, 20.0)

    assert result == tmp_path / "music_conditioned.m4a"
    assert len(executor.graphs) == 1
    assert "loop" in executor.graphs[0].stages
