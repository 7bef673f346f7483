# stitcher/generators/overlay_geometry.py
"""
Overlay placement. Positions are ffmpeg overlay-filter expressions where
W/H are the main frame size and w/h the (already scaled) overlay size.
"""
import logging
import re

from stitcher.models import ANCHORS, DEFAULT_ANCHOR


def resolve(anchor: str, margin_pixels: int) -> tuple:
    """Returns the (x, y) overlay expressions for a named corner."""
    margin = int(margin_pixels)
    if anchor not in ANCHORS:
        logging.warning(f"Unknown overlay anchor '{anchor}', using {DEFAULT_ANCHOR}")
        anchor = DEFAULT_ANCHOR

    left = str(margin)
    right = f"W-w-{margin}"
    top = str(margin)
    bottom = f"H-h-{margin}"

    if anchor == "top-left":
        return left, top
    if anchor == "top-right":
        return right, top
    if anchor == "bottom-left":
        return left, bottom
    return right, bottom


def scale_instruction(width_pixels: int) -> tuple:
    # -1 keeps the aspect ratio
    return int(width_pixels), -1


_EXPR = re.compile(r"^(?:(?P<frame>[WH])-(?P<overlay>[wh])-)?(?P<margin>\d+)$")


def evaluate(expr: str, frame_size: int, overlay_size: int) -> int:
    """Computes the pixel offset an expression produced by resolve() stands for."""
    match = _EXPR.match(str(expr))
    if not match:
        raise ValueError(f"Unsupported overlay expression: {expr}")
    margin = int(match.group("margin"))
    if match.group("frame"):
        return frame_size - overlay_size - margin
    return margin


def placement(anchor: str, margin_pixels: int, width_pixels: int, frame_size: tuple, image_size: tuple) -> tuple:
    """
    Pixel box (x, y, w, h) the overlay lands on, for a main frame of
    frame_size (W, H) and a source image of image_size before scaling.
    """
    frame_w, frame_h = frame_size
    image_w, image_h = image_size
    w, _ = scale_instruction(width_pixels)
    h = round(image_h * w / image_w)
    x_expr, y_expr = resolve(anchor, margin_pixels)
    return evaluate(x_expr, frame_w, w), evaluate(y_expr, frame_h, h), w, h


def fits(box: tuple, frame_size: tuple) -> bool:
    x, y, w, h = box
    frame_w, frame_h = frame_size
    return x >= 0 and y >= 0 and x + w <= frame_w and y + h <= frame_h
