"""
End-to-end tests for HeartRatePipeline with scripted detectors.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from facepulse.config import PipelineConfig
from facepulse.pipeline import HeartRatePipeline
from facepulse.types import Rect, TrackingState

WIDTH, HEIGHT = 160, 120
FPS = 30.0
FACE = Rect(40, 20, 80, 80)
FALSE_POSITIVE = Rect(0, 0, 30, 30)
EYES = [Rect(55, 35, 20, 12), Rect(85, 35, 20, 12)]


class ScriptedDetector:
    """Returns ``candidates`` unless switched off; counts calls."""

    def __init__(self, candidates):
        self.candidates = list(candidates)
        self.enabled = True
        self.calls = 0

    def detect(self, image, search_region=None):
        self.calls += 1
        return list(self.candidates) if self.enabled else []


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, timestamp, mean_bpm, min_bpm, max_bpm):
        self.calls.append((timestamp, mean_bpm, min_bpm, max_bpm))


def _frames(seconds, bpm=72.0, start=0.0, seed=0):
    """Yield ``(color, gray, timestamp_us)`` with a pulsing face region."""
    rng = np.random.default_rng(seed)
    gray = np.zeros((HEIGHT, WIDTH), dtype=np.uint8)
    for k in range(int(seconds * FPS)):
        t = start + k / FPS
        level = (
            100.0
            + 2.0 * np.sin(2 * np.pi * bpm / 60.0 * t)
            + 0.05 * t
            + rng.normal(scale=0.3)
        )
        color = np.full((HEIGHT, WIDTH, 3), 30.0, dtype=np.float32)
        color[FACE.y:FACE.bottom, FACE.x:FACE.right, 1] = level
        yield color, gray, int(round(t * 1e6))


def _pipeline(observer=None, **overrides):
    params = dict(frame_width=WIDTH, frame_height=HEIGHT, update_interval=0.0)
    params.update(overrides)
    face = ScriptedDetector([FALSE_POSITIVE, FACE])
    eyes = ScriptedDetector(EYES)
    pipeline = HeartRatePipeline(PipelineConfig(**params), face, eyes, observer=observer)
    return pipeline, face, eyes


class TestHeartRatePipeline:

    @pytest.mark.parametrize("method", ["bandpass", "detrend_mean"])
    def test_estimates_72_bpm(self, method):
        recorder = Recorder()
        pipeline, _, _ = _pipeline(recorder, filter_method=method)
        for frame in _frames(20.0):
            pipeline.process_frame(*frame)

        assert recorder.calls, "no heart rate reported"
        _, mean_bpm, min_bpm, max_bpm = recorder.calls[-1]
        assert mean_bpm == pytest.approx(72.0, rel=0.05)
        assert min_bpm <= mean_bpm <= max_bpm

    def test_tracks_largest_face_and_masks_eyes(self):
        pipeline, _, _ = _pipeline()
        frame = next(_frames(1.0))
        pipeline.process_frame(*frame)
        assert pipeline.region.valid
        assert pipeline.region.box == FACE
        assert pipeline.eyes.valid
        assert pipeline.eyes.right == EYES[0]
        assert pipeline.eyes.left == EYES[1]
        assert pipeline.mask.pixel_count == FACE.area - 2 * 20 * 12
        assert len(pipeline.buffer) == 1

    def test_no_report_before_min_duration(self):
        recorder = Recorder()
        pipeline, _, _ = _pipeline(recorder, min_signal_duration=5.0)
        for frame in _frames(4.5):
            pipeline.process_frame(*frame)
        assert recorder.calls == []
        assert pipeline.last_estimate is None

    def test_estimation_cadence_independent_of_frame_rate(self):
        recorder = Recorder()
        pipeline, _, _ = _pipeline(recorder, estimation_rate=2.0, min_estimates=1)
        for frame in _frames(10.0):
            pipeline.process_frame(*frame)
        # Ticks every 0.5 s once 5 s of signal exist.
        assert 9 <= len(recorder.calls) <= 11

    def test_report_interval(self):
        recorder = Recorder()
        pipeline, _, _ = _pipeline(recorder, min_estimates=1, report_interval=2.0)
        for frame in _frames(12.0):
            pipeline.process_frame(*frame)
        stamps = [c[0] for c in recorder.calls]
        assert len(stamps) >= 2
        assert all(b - a >= 2_000_000 - 1 for a, b in zip(stamps, stamps[1:]))

    def test_missed_detections_lose_track_without_samples(self):
        pipeline, face, _ = _pipeline(lost_after_misses=5)
        frames = _frames(4.0)
        for _ in range(60):
            pipeline.process_frame(*next(frames))
        assert pipeline.region.valid
        count = len(pipeline.buffer)

        face.enabled = False
        for i in range(5):
            pipeline.process_frame(*next(frames))
            assert not pipeline.region.valid
            assert len(pipeline.buffer) == count
        assert pipeline.region.state is TrackingState.LOST
        assert pipeline.mask is None
        assert len(pipeline.buffer.markers) == 1
        assert pipeline.buffer.window() is None

    def test_signal_restarts_after_reacquisition(self):
        pipeline, face, _ = _pipeline(lost_after_misses=2)
        frames = _frames(6.0)
        for _ in range(60):
            pipeline.process_frame(*next(frames))
        face.enabled = False
        for _ in range(2):
            pipeline.process_frame(*next(frames))
        face.enabled = True
        for _ in range(30):
            pipeline.process_frame(*next(frames))
        window = pipeline.buffer.window()
        assert window is not None
        assert window.duration == pytest.approx(29 / 30.0, abs=0.05)

    def test_track_loss_restarts_aggregation(self):
        recorder = Recorder()
        pipeline, face, _ = _pipeline(recorder, lost_after_misses=2)
        frames = _frames(20.0)
        for _ in range(360):
            pipeline.process_frame(*next(frames))
        assert pipeline.last_estimate.count >= 3
        assert recorder.calls

        face.enabled = False
        for _ in range(2):
            pipeline.process_frame(*next(frames))
        assert pipeline.region.state is TrackingState.LOST
        assert pipeline.last_estimate is None
        reported = len(recorder.calls)

        face.enabled = True
        for _ in range(180):
            pipeline.process_frame(*next(frames))
        # One estimate from the new segment, below min_estimates.
        assert pipeline.last_estimate is not None
        assert pipeline.last_estimate.count == 1
        assert not pipeline.last_estimate.valid
        assert len(recorder.calls) == reported

    def test_face_leaving_frame_inserts_marker(self):
        pipeline, face, _ = _pipeline()
        frames = _frames(4.0)
        for _ in range(60):
            pipeline.process_frame(*next(frames))
        count = len(pipeline.buffer)
        assert pipeline.buffer.markers == []

        face.candidates = [Rect(130, 20, 80, 80)]
        pipeline.process_frame(*next(frames))
        assert pipeline.region.state is TrackingState.LOST
        assert pipeline.mask is None
        assert len(pipeline.buffer) == count
        assert len(pipeline.buffer.markers) == 1
        assert pipeline.buffer.window() is None

    def test_detector_skipped_between_updates(self):
        pipeline, face, _ = _pipeline(update_interval=1.0, rescan_interval=1.0)
        for frame in _frames(3.0):
            pipeline.process_frame(*frame)
        # One call on acquisition, then one per second.
        assert face.calls <= 4
        assert len(pipeline.buffer) == 90

    def test_close(self):
        pipeline, _, _ = _pipeline()
        for frame in _frames(1.0):
            pipeline.process_frame(*frame)
        pipeline.close()
        assert len(pipeline.buffer) == 0
        assert pipeline.region.box is None
        with pytest.raises(RuntimeError):
            pipeline.process_frame(*next(_frames(1.0)))

    def test_context_manager_closes(self):
        with _pipeline()[0] as pipeline:
            pipeline.process_frame(*next(_frames(1.0)))
        with pytest.raises(RuntimeError):
            pipeline.process_frame(*next(_frames(1.0)))

    def test_reset_keeps_tracking(self):
        pipeline, _, _ = _pipeline()
        for frame in _frames(2.0):
            pipeline.process_frame(*frame)
        pipeline.reset()
        assert len(pipeline.buffer) == 0
        assert pipeline.region.valid
