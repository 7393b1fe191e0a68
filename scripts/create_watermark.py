#!/usr/bin/env python3
"""
Watermark Setup Script - Generate the default watermark overlay

The worker composites this image onto every upload for the "watermark"
operation and refuses to start without it.

Run this once (or during Docker build) before starting a worker:
    python scripts/create_watermark.py

Environment variables:
    WATERMARK_PATH: Where to write the overlay (default: ./assets/watermark.png)
"""

import os
import logging
import argparse
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_watermark(
    output_path: str = "./assets/watermark.png",
    text: str = "imagery",
    width: int = 160,
    height: int = 40,
    opacity: int = 128,
):
    """Render semi-transparent white text on a transparent canvas.

    Args:
        output_path: PNG file to write
        text: Watermark text
        width: Overlay width in pixels
        height: Overlay height in pixels
        opacity: Alpha of the text (0-255)
    """
    overlay = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    font = ImageFont.load_default()

    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    position = ((width - (right - left)) // 2, (height - (bottom - top)) // 2)
    draw.text(position, text, font=font, fill=(255, 255, 255, opacity))

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    overlay.save(path, format="PNG")
    logger.info(f"Watermark written to {path} ({width}x{height})")
    return path


def main():
    parser = argparse.ArgumentParser(
        description="Generate the watermark overlay used by the processing worker"
    )
    parser.add_argument(
        "--output",
        default=os.environ.get("WATERMARK_PATH", "./assets/watermark.png"),
        help="Output PNG path"
    )
    parser.add_argument("--text", default="imagery", help="Watermark text")
    parser.add_argument("--width", type=int, default=160)
    parser.add_argument("--height", type=int, default=40)
    parser.add_argument("--opacity", type=int, default=128)
    args = parser.parse_args()

    create_watermark(args.output, args.text, args.width, args.height, args.opacity)


if __name__ == "__main__":
    main()
