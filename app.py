import asyncio
import json

import gradio as gr

from stitcher.config import Settings, configure_logging, ensure_directories
from stitcher.errors import StitcherError
from stitcher.models import ANCHORS, DEFAULT_ANCHOR, JobRequest
from stitcher.pipeline import JobRunner
from stitcher.utils.cleanup import run_periodic_sweep

settings = Settings.from_env()
configure_logging(settings)
ensure_directories(settings)

# Created on first use so it binds to Gradio's event loop
_state = {"runner": None, "sweeper": None}


def get_runner() -> JobRunner:
    if _state["runner"] is None:
        _state["runner"] = JobRunner(settings)
        _state["sweeper"] = asyncio.create_task(
            run_periodic_sweep(
                [settings.output_dir, settings.public_dir],
                settings.output_retention_seconds,
                settings.cleanup_interval_seconds,
            )
        )
    return _state["runner"]


async def start_job(videos_json, music_url, overlay_url, position, size, margin, job_id):
    try:
        videos = json.loads(videos_json or "[]")
    except json.JSONDecodeError as e:
        raise gr.Error(f"Videos must be a JSON array: {e}")

    payload = {"videos": videos, "mv_audio": music_url, "job_id": job_id or None}
    if overlay_url:
        payload["overlay_image_url"] = overlay_url
        payload["overlay_options"] = {"position": position, "size": size, "margin": margin}

    try:
        request = JobRequest.from_dict(payload)
        new_id = await get_runner().start(request)
    except StitcherError as e:
        raise gr.Error(str(e))
    return new_id, {"id": new_id, "status": "processing_started"}


async def check_status(job_id):
    if not job_id:
        raise gr.Error("Enter a job id.")
    record = await get_runner().get_status(job_id)
    if record is None:
        raise gr.Error(f"No job with id {job_id}")
    return record


with gr.Blocks(title="Video Stitcher") as demo:
    gr.Markdown("# Video Stitcher")
    gr.Markdown(
        "Stitch scene videos together, lay a music track under them and "
        "optionally place an image overlay in a corner."
    )

    with gr.Row():
        with gr.Column(scale=1):
            videos_input = gr.Textbox(
                label="Videos (JSON)",
                lines=6,
                value='[{"scene_number": 1, "final_video_url": "https://..."}]',
            )
            music_input = gr.Textbox(label="Music URL (mv_audio)")
            overlay_input = gr.Textbox(label="Overlay image URL (optional)")
            with gr.Row():
                position_input = gr.Dropdown(choices=list(ANCHORS), value=DEFAULT_ANCHOR, label="Position")
                size_input = gr.Number(value=150, label="Width (px)", precision=0)
                margin_input = gr.Number(value=20, label="Margin (px)", precision=0)
            job_id_input = gr.Textbox(label="Job ID (optional)")
            submit_btn = gr.Button("Start Job", variant="primary")

        with gr.Column(scale=1):
            job_id_output = gr.Textbox(label="Job ID")
            status_btn = gr.Button("Check Status")
            status_output = gr.JSON(label="Job Status")

    submit_btn.click(
        fn=start_job,
        inputs=[videos_input, music_input, overlay_input, position_input, size_input, margin_input, job_id_input],
        outputs=[job_id_output, status_output],
    )
    status_btn.click(fn=check_status, inputs=[job_id_output], outputs=[status_output])


if __name__ == "__main__":
    demo.launch()
