#!/usr/bin/env python3
"""
facepulse – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --resolution WxH       Frame resolution (default: 640x480)
    --fps INT              Target frame rate (default: 30)
    --camera-index INT     OpenCV camera index (default: 0)
    --video PATH           Read frames from a video file instead of a camera
    --filter NAME          bandpass | detrend_mean (default: bandpass)
    --rescan-interval SEC  Seconds between full-frame face scans (default: 1)
    --window SEC           Signal horizon in seconds (default: 30)
    --no-flip              Do not mirror the preview window
    --headless             Run without display window (log BPM to stdout)
    --draw                 Outline face and eye boxes in the display window
    --log                  Log every heart-rate estimate
    --verbose              Debug logging

Keyboard shortcuts (when a window is open)
------------------------------------------
    q / ESC  – quit
    r        – reset signal buffer
    s        – save a single annotated frame as PNG
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Optional

import cv2
import numpy as np

from facepulse.config import ConfigError, PipelineConfig
from facepulse.camera import Webcam
from facepulse.detector import DetectorLoadError
from facepulse.pipeline import HeartRatePipeline

logger = logging.getLogger("facepulse")

_GREEN = (0, 220, 80)
_CYAN = (220, 200, 0)
_WHITE = (255, 255, 255)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Contactless heart-rate monitor from face video (rPPG)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--resolution", default="640x480",
                        help="Frame resolution, e.g. 640x480")
    parser.add_argument("--fps", type=int, default=30,
                        help="Target capture frame rate")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--video", default=None,
                        help="Process this video file instead of a camera")
    parser.add_argument("--filter", dest="filter_method", default="bandpass",
                        choices=("bandpass", "detrend_mean"),
                        help="Denoising pipeline")
    parser.add_argument("--rescan-interval", type=float, default=1.0,
                        help="Seconds between full-frame face scans")
    parser.add_argument("--window", type=float, default=30.0,
                        help="Signal horizon in seconds")
    parser.add_argument("--no-flip", action="store_true",
                        help="Do not mirror the preview (processing never mirrors)")
    parser.add_argument("--headless", action="store_true",
                        help="No display window; log BPM to stdout only")
    parser.add_argument("--draw", action="store_true",
                        help="Outline tracked face and eyes")
    parser.add_argument("--log", action="store_true",
                        help="Log every heart-rate estimate")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        raise ConfigError("Invalid --resolution format.  Use WxH, e.g. 640x480.") from None
    return PipelineConfig().with_overrides(
        frame_width=res_w,
        frame_height=res_h,
        filter_method=args.filter_method,
        rescan_interval=args.rescan_interval,
        update_interval=args.rescan_interval,
        buffer_duration=args.window,
        log=args.log,
        draw=args.draw,
    )


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def annotate(
    frame: np.ndarray,
    pipeline: HeartRatePipeline,
    bpm: Optional[tuple],
    mirror: bool = False,
) -> np.ndarray:
    """
    Return a display copy of *frame* with the tracked boxes (if enabled) and
    the latest BPM.

    With *mirror* the picture is flipped left-to-right for a selfie-style
    preview; boxes are mirrored with it and the text stays readable.
    """
    frame = cv2.flip(frame, 1) if mirror else frame.copy()
    width = frame.shape[1]

    def _rect(box, colour, thickness):
        x, y, w, h = box
        if mirror:
            x = width - x - w
        cv2.rectangle(frame, (x, y), (x + w, y + h), colour, thickness)

    if pipeline.config.draw and pipeline.region.valid:
        _rect(pipeline.region.box, _GREEN, 2)
        eyes = pipeline.eyes
        if eyes.valid:
            for eye in (eyes.left, eyes.right):
                _rect(eye, _CYAN, 1)
    if bpm is not None:
        mean, low, high = bpm
        text = f"{mean:.0f} BPM ({low:.0f}-{high:.0f})"
    else:
        text = "Measuring..." if pipeline.region.valid else "Searching for face..."
    cv2.putText(frame, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, _WHITE, 2)
    return frame


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = build_config(args)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    latest: dict = {"bpm": None}

    def on_heart_rate(timestamp: int, mean_bpm: float, min_bpm: float, max_bpm: float) -> None:
        latest["bpm"] = (mean_bpm, min_bpm, max_bpm)
        if args.headless:
            ts = time.strftime("%H:%M:%S")
            print(f"[{ts}] BPM={mean_bpm:.1f}  min={min_bpm:.1f}  max={max_bpm:.1f}")

    try:
        pipeline = HeartRatePipeline.from_config(config, observer=on_heart_rate)
    except DetectorLoadError as exc:
        logger.error("Cannot initialise detectors: %s", exc)
        return 1

    source = args.video if args.video is not None else args.camera_index
    camera = Webcam(
        source=source,
        resolution=(config.frame_width, config.frame_height),
        fps=args.fps,
    )
    mirror = not args.no_flip and args.video is None

    logger.info("Starting heart-rate monitor.  Press 'q' or ESC to quit.")
    if not args.headless:
        cv2.namedWindow("facepulse", cv2.WINDOW_NORMAL)
        cv2.resizeWindow("facepulse", config.frame_width, config.frame_height)

    try:
        with camera, pipeline:
            for color, gray, timestamp in camera.frames():
                pipeline.process_frame(color, gray, timestamp)
                if not pipeline.region.valid:
                    latest["bpm"] = None

                if args.headless:
                    continue
                annotated = annotate(color, pipeline, latest["bpm"], mirror=mirror)
                cv2.imshow("facepulse", annotated)
                key = cv2.waitKey(1) & 0xFF
                if key in (ord("q"), 27):          # q or ESC
                    logger.info("Quit requested by user.")
                    break
                elif key == ord("r"):
                    pipeline.reset()
                    latest["bpm"] = None
                    logger.info("Signal buffer reset.")
                elif key == ord("s"):
                    fname = f"snapshot_{int(time.time())}.png"
                    cv2.imwrite(fname, annotated)
                    logger.info("Saved snapshot: %s", fname)

    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        if not args.headless:
            cv2.destroyAllWindows()

    return 0


def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
