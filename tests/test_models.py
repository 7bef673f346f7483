import pytest

from stitcher.errors import InvalidRequestError
from stitcher.models import CompositionJob, JobRequest, JobStage, OverlaySpec


def test_request_sorts_scenes_numerically():
    request = JobRequest.from_dict({
        "videos": [
            {"scene_number": "10", "final_video_url": "https://v/10.mp4"},
            {"scene_number": 2, "final_video_url": "https://v/2.mp4"},
            {"scene_number": "1", "final_video_url": "https://v/1.mp4"},
        ],
        "mv_audio": "https://a/music.mp3",
    })
    assert [v.scene_number for v in request.videos] == [1, 2, 10]
    assert request.overlay is None


def test_overlay_options_accept_strings():
    request = JobRequest.from_dict({
        "videos": [{"scene_number": 1, "final_video_url": "https://v/1.mp4"}],
        "mv_audio": "https://a/music.mp3",
        "overlay_image_url": "https://i/logo.png",
        "overlay_options": {"position": "top-right", "size": "200", "margin": "10", "opacity": "0.5"},
    })
    assert request.overlay == OverlaySpec(anchor="top-right", width_pixels=200, margin_pixels=10, opacity=0.5)


def test_overlay_defaults():
    request = JobRequest.from_dict({
        "videos": ["https://v/1.mp4"],
        "mv_audio": "https://a/music.mp3",
        "overlay_image_url": "https://i/logo.png",
    })
    assert request.overlay == OverlaySpec()
    assert request.overlay.anchor == "bottom-right"


@pytest.mark.parametrize(
    "payload",
    [
        {"mv_audio": "https://a/music.mp3"},
        {"videos": [], "mv_audio": "https://a/music.mp3"},
        {"videos": [{"scene_number": 1, "final_video_url": "https://v/1.mp4"}]},
        {"videos": [{"scene_number": 1}], "mv_audio": "https://a/music.mp3"},
        {"videos": [{"scene_number": "one", "url": "https://v"}], "mv_audio": "https://a"},
    ],
)
def test_invalid_requests(payload):
    with pytest.raises(InvalidRequestError):
        JobRequest.from_dict(payload)


def test_invalid_overlay_option():
    with pytest.raises(InvalidRequestError):
        OverlaySpec.from_options({"size": "big"})


def test_terminal_job_cannot_advance():
    job = CompositionJob(id="j", request=JobRequest(videos=(), music_url="https://a"))
    job.advance(JobStage.DONE, "completed")
    with pytest.raises(RuntimeError):
        job.advance(JobStage.COMPOSING)


def test_short_form_rejects_overlay():
    with pytest.raises(InvalidRequestError, match="short_form"):
        JobRequest.from_dict({
            "videos": ["https://v/1.mp4"],
            "mv_audio": "https://a/music.mp3",
            "overlay_image_url": "https://i/logo.png",
            "short_form": True,
        })
