"""
Unit tests for RegionTracker and EyeLocator.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from facepulse.tracker import EyeLocator, RegionTracker, select_largest, select_nearest
from facepulse.types import Rect, TrackingState


class RecordingDetector:
    """Detector double returning fixed candidates and recording search regions."""

    def __init__(self, candidates):
        self.candidates = list(candidates)
        self.regions = []

    def detect(self, image, search_region=None):
        self.regions.append(search_region)
        return list(self.candidates)


def _tracker(**kwargs) -> RegionTracker:
    params = dict(rescan_interval=1.0, update_interval=0.0, lost_after_misses=5)
    params.update(kwargs)
    return RegionTracker((640, 480), **params)


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------

class TestSelection:

    def test_largest_when_searching(self):
        tracker = _tracker()
        small = Rect(10, 10, 50, 50)
        big = Rect(300, 200, 120, 120)
        region = tracker.update([small, big], now=0.0)
        assert region.valid
        assert region.state is TrackingState.TRACKING
        assert region.box == big

    def test_nearest_to_previous_centre(self):
        tracker = _tracker()
        tracker.update([Rect(100, 100, 100, 100)], now=0.0)
        near = Rect(110, 105, 90, 90)
        far_but_big = Rect(400, 250, 200, 200)
        region = tracker.update([far_but_big, near], now=0.1)
        assert region.box == near

    def test_nearest_rule_on_random_candidates(self):
        rng = np.random.default_rng(7)
        tracker = _tracker()
        tracker.update([Rect(200, 150, 120, 120)], now=0.0)
        for step in range(1, 50):
            previous = tracker.region.box
            candidates = []
            for _ in range(rng.integers(2, 6)):
                w = int(rng.integers(40, 150))
                x = int(rng.integers(0, 640 - w))
                y = int(rng.integers(0, 480 - w))
                candidates.append(Rect(x, y, w, w))
            region = tracker.update(candidates, now=step * 0.1)
            distances = [previous.distance_to(c) for c in candidates]
            assert region.box == candidates[int(np.argmin(distances))]

    def test_select_helpers_keep_first_on_ties(self):
        a = Rect(0, 0, 10, 10)
        b = Rect(20, 0, 10, 10)
        ref = Rect(10, 0, 10, 10)
        assert select_nearest([a, b], ref) == a
        assert select_largest([a, b]) == a


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestStateMachine:

    def test_no_candidates_stays_searching(self):
        tracker = _tracker()
        region = tracker.update([], now=0.0)
        assert not region.valid
        assert region.state is TrackingState.SEARCHING

    def test_miss_invalidates_but_keeps_box(self):
        tracker = _tracker()
        box = Rect(100, 100, 100, 100)
        tracker.update([box], now=0.0)
        region = tracker.update([], now=0.1)
        assert not region.valid
        assert region.state is TrackingState.TRACKING
        assert region.box == box
        assert region.misses == 1

    def test_lost_after_consecutive_misses(self):
        tracker = _tracker(lost_after_misses=5)
        tracker.update([Rect(100, 100, 100, 100)], now=0.0)
        for i in range(4):
            region = tracker.update([], now=0.1 * (i + 1))
            assert region.state is TrackingState.TRACKING
        region = tracker.update([], now=0.5)
        assert region.state is TrackingState.LOST
        assert not region.valid
        assert region.box is None

    def test_reacquire_after_miss_uses_nearest(self):
        tracker = _tracker()
        tracker.update([Rect(100, 100, 100, 100)], now=0.0)
        tracker.update([], now=0.1)
        near = Rect(105, 100, 100, 100)
        region = tracker.update([Rect(400, 300, 150, 150), near], now=0.2)
        assert region.valid
        assert region.box == near
        assert region.misses == 0

    def test_box_outside_frame_is_lost(self):
        tracker = _tracker()
        tracker.update([Rect(100, 100, 100, 100)], now=0.0)
        region = tracker.update([Rect(600, 100, 100, 100)], now=0.1)
        assert region.state is TrackingState.LOST

    def test_searching_after_lost(self):
        tracker = _tracker(lost_after_misses=1)
        tracker.update([Rect(100, 100, 100, 100)], now=0.0)
        assert tracker.update([], now=0.1).state is TrackingState.LOST
        assert tracker.update([], now=0.2).state is TrackingState.SEARCHING
        big = Rect(300, 200, 150, 150)
        region = tracker.update([Rect(10, 10, 50, 50), big], now=0.3)
        assert region.box == big


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class TestScheduling:

    def test_due_when_searching(self):
        assert _tracker().due(0.0)

    def test_update_interval_respected(self):
        tracker = _tracker(update_interval=0.5, rescan_interval=10.0)
        tracker.update([Rect(100, 100, 100, 100)], now=0.0)
        assert not tracker.due(0.2)
        assert tracker.due(0.5)

    def test_rescan_forces_full_frame(self):
        tracker = _tracker(rescan_interval=1.0)
        box = Rect(100, 100, 100, 100)
        tracker.update([box], now=0.0)
        assert tracker.search_region(0.5) == box.expand(0.25).clip(640, 480)
        assert tracker.rescan_due(1.0)
        assert tracker.due(1.0)
        assert tracker.search_region(1.0) is None

    def test_rescan_time_recorded(self):
        tracker = _tracker(rescan_interval=1.0)
        box = Rect(100, 100, 100, 100)
        tracker.update([box], now=0.0)
        tracker.update([box], now=0.5)
        assert tracker.region.rescanned_at == 0.0
        tracker.update([box], now=1.2)
        assert tracker.region.rescanned_at == 1.2

    def test_reset(self):
        tracker = _tracker()
        tracker.update([Rect(100, 100, 100, 100)], now=0.0)
        tracker.reset()
        assert tracker.region.state is TrackingState.SEARCHING
        assert tracker.region.box is None


# ---------------------------------------------------------------------------
# EyeLocator
# ---------------------------------------------------------------------------

class TestEyeLocator:

    FACE = Rect(0, 0, 200, 200)

    def test_fixed_horizontal_convention(self):
        image_left = Rect(40, 50, 30, 20)
        image_right = Rect(140, 50, 30, 20)
        for candidates in ([image_left, image_right], [image_right, image_left]):
            eyes = EyeLocator.assign(candidates, self.FACE)
            assert eyes.valid
            assert eyes.right == image_left
            assert eyes.left == image_right

    def test_fewer_than_two_is_invalid(self):
        assert not EyeLocator.assign([Rect(40, 50, 30, 20)], self.FACE).valid
        assert not EyeLocator.assign([], self.FACE).valid

    def test_same_side_is_invalid(self):
        eyes = EyeLocator.assign([Rect(20, 50, 30, 20), Rect(50, 50, 30, 20)], self.FACE)
        assert not eyes.valid

    def test_largest_per_side(self):
        small = Rect(20, 50, 20, 10)
        big = Rect(40, 50, 40, 30)
        other = Rect(140, 50, 30, 20)
        eyes = EyeLocator.assign([small, other, big], self.FACE)
        assert eyes.right == big
        assert eyes.left == other

    def test_single_detector_searches_upper_half(self):
        detector = RecordingDetector([Rect(140, 150, 30, 20), Rect(240, 150, 30, 20)])
        face = Rect(100, 100, 200, 200)
        eyes = EyeLocator(detector).locate(np.zeros((480, 640), np.uint8), face)
        assert detector.regions == [Rect(100, 100, 200, 100)]
        assert eyes.valid

    def test_separate_detectors_search_quarters(self):
        right = RecordingDetector([Rect(130, 140, 30, 20)])
        left = RecordingDetector([Rect(230, 140, 30, 20)])
        face = Rect(100, 100, 200, 200)
        eyes = EyeLocator(right, left).locate(np.zeros((480, 640), np.uint8), face)
        assert right.regions == [Rect(100, 100, 100, 100)]
        assert left.regions == [Rect(200, 100, 100, 100)]
        assert eyes.right == Rect(130, 140, 30, 20)
        assert eyes.left == Rect(230, 140, 30, 20)


class TestRect:

    def test_geometry(self):
        r = Rect(10, 20, 30, 40)
        assert r.center == (25.0, 40.0)
        assert r.area == 1200
        assert r.inside(40, 60)
        assert not r.inside(39, 60)
        assert r.clip(20, 30) == Rect(10, 20, 10, 10)
        assert r.expand(0.5) == Rect(-5, 0, 60, 80)

    @pytest.mark.parametrize("values", [(1, 2, 3, 4), np.array([1, 2, 3, 4], dtype=np.int32)])
    def test_from_sequence(self, values):
        assert Rect.from_sequence(values) == Rect(1, 2, 3, 4)
