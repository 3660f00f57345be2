from __future__ import annotations

import random
import unittest

from sched_dash.application.timeline import (
    group_by_pid,
    merge_segments,
    reconstruct_timeline,
    segment_at,
    segments_in_range,
)
from sched_dash.domain.events import IDLE_PID, SchedulerEvent
from sched_dash.domain.timeline import Segment


def _events(*specs: tuple) -> list[SchedulerEvent]:
    events = []
    for sequence, spec in enumerate(specs):
        kind, pid, tick = spec[:3]
        remaining = spec[3] if len(spec) > 3 else None
        events.append(
            SchedulerEvent(kind=kind, pid=pid, tick=tick, remaining=remaining, run_id="r", sequence=sequence)
        )
    return events


def _spans(timeline) -> list[tuple]:
    return [(segment.pid, segment.start_tick, segment.end_tick) for segment in timeline.segments]


class TimelineReconstructionTests(unittest.TestCase):
    def test_single_job_with_slices(self) -> None:
        timeline = reconstruct_timeline(
            _events(
                ("job_started", 1, 0),
                ("gantt_slice", 1, 0),
                ("gantt_slice", 1, 1),
                ("job_finished", 1, 2),
            )
        )

        self.assertEqual(_spans(timeline), [(1, 0, 2)])
        self.assertEqual(timeline.stats.context_switches, 0)
        self.assertEqual(timeline.stats.cpu_utilization, 1.0)
        self.assertEqual(timeline.stats.cpu_utilization_percent, 100.0)
        self.assertIsNone(timeline.running_pid)

    def test_preemption_and_resume(self) -> None:
        timeline = reconstruct_timeline(
            _events(
                ("job_started", 1, 0),
                ("job_preempted", 1, 3, 4),
                ("job_started", 2, 3),
                ("job_finished", 2, 5),
                ("job_resumed", 1, 5),
                ("job_finished", 1, 7),
            )
        )

        self.assertEqual(_spans(timeline), [(1, 0, 3), (2, 3, 5), (1, 5, 7)])
        self.assertEqual(timeline.segments[0].remaining_at_end, 4)
        self.assertEqual(timeline.stats.context_switches, 2)
        self.assertEqual(timeline.stats.idle_time, 0)
        self.assertEqual(timeline.stats.total_time, 7)

    def test_idle_gap_becomes_idle_segment(self) -> None:
        timeline = reconstruct_timeline(
            _events(
                ("job_started", 1, 0),
                ("job_finished", 1, 3),
                ("job_started", 2, 6),
                ("job_finished", 2, 8),
            )
        )

        self.assertEqual(_spans(timeline), [(1, 0, 3), (IDLE_PID, 3, 6), (2, 6, 8)])
        self.assertEqual(timeline.stats.idle_time, 3)
        self.assertAlmostEqual(timeline.stats.cpu_utilization, 5 / 8)

    def test_cpu_idle_before_first_dispatch(self) -> None:
        timeline = reconstruct_timeline(_events(("job_started", 1, 2), ("job_finished", 1, 4)))
        self.assertEqual(_spans(timeline), [(IDLE_PID, 0, 2), (1, 2, 4)])

    def test_idle_transition_closes_current_segment(self) -> None:
        timeline = reconstruct_timeline(
            _events(
                ("job_started", 1, 0),
                ("context_switch", None, 2),
                ("tick", None, 3),
                ("context_switch", 2, 4),
                ("job_finished", 2, 5),
            )
        )
        self.assertEqual(_spans(timeline), [(1, 0, 2), (IDLE_PID, 2, 4), (2, 4, 5)])

    def test_open_segment_is_closed_at_last_tick(self) -> None:
        timeline = reconstruct_timeline(
            _events(("job_started", 1, 0), ("gantt_slice", 1, 0), ("tick", None, 4))
        )

        self.assertEqual(_spans(timeline), [(1, 0, 4)])
        self.assertEqual(timeline.running_pid, 1)

    def test_touching_same_pid_segments_merge(self) -> None:
        timeline = reconstruct_timeline(
            _events(
                ("job_started", 1, 0),
                ("job_preempted", 1, 2),
                ("job_resumed", 1, 2),
                ("job_finished", 1, 4),
            )
        )
        self.assertEqual(_spans(timeline), [(1, 0, 4)])
        self.assertEqual(timeline.stats.context_switches, 0)

    def test_same_tick_ties_follow_sequence_order(self) -> None:
        events = _events(
            ("job_started", 1, 0),
            ("job_preempted", 1, 2),
            ("job_started", 2, 2),
            ("job_finished", 2, 4),
        )
        shuffled = [events[2], events[0], events[3], events[1]]

        self.assertEqual(_spans(reconstruct_timeline(shuffled)), [(1, 0, 2), (2, 2, 4)])

    def test_anomalous_orderings_are_tolerated(self) -> None:
        timeline = reconstruct_timeline(
            _events(
                ("job_finished", 9, 1),
                ("job_started", 1, 5),
                ("job_started", 2, 3),
                ("job_finished", 2, 6),
                ("summary", None, None),
                ("mystery", 4, 2),
            )
        )

        self.assertEqual(_spans(timeline), [(IDLE_PID, 0, 5), (2, 5, 6)])

    def test_unknown_kinds_do_not_extend_the_timeline(self) -> None:
        events = _events(("job_started", 1, 0), ("job_finished", 1, 2), ("queue_snapshot", 3, 9), ("raw", 4, 7))

        timeline = reconstruct_timeline(events)

        self.assertEqual(_spans(timeline), [(1, 0, 2)])
        self.assertEqual(timeline.stats.total_time, 2)

    def test_empty_input(self) -> None:
        timeline = reconstruct_timeline([])
        self.assertEqual(timeline.segments, ())
        self.assertEqual(timeline.stats.total_time, 0)
        self.assertEqual(timeline.stats.cpu_utilization, 0.0)

    def test_reconstruction_is_pure(self) -> None:
        events = _events(("job_started", 1, 0), ("job_preempted", 1, 2), ("job_started", 2, 2))
        self.assertEqual(reconstruct_timeline(events), reconstruct_timeline(events))

    def test_random_streams_never_overlap(self) -> None:
        kinds = ["job_started", "job_resumed", "job_preempted", "job_finished", "context_switch", "gantt_slice", "tick"]
        rng = random.Random(7)
        for _ in range(200):
            specs = [
                (rng.choice(kinds), rng.choice([1, 2, 3, None]), rng.choice([rng.randint(0, 20), None]))
                for _ in range(rng.randint(0, 30))
            ]
            segments = reconstruct_timeline(_events(*specs)).segments
            for earlier, later in zip(segments, segments[1:]):
                self.assertLessEqual(earlier.end_tick, later.start_tick)
                self.assertFalse(earlier.pid == later.pid and earlier.end_tick == later.start_tick)
            for segment in segments:
                self.assertGreater(segment.end_tick, segment.start_tick)


class SegmentQueryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.segments = [
            Segment(pid=1, start_tick=0, end_tick=3),
            Segment(pid=IDLE_PID, start_tick=3, end_tick=5),
            Segment(pid=1, start_tick=5, end_tick=6),
        ]

    def test_segment_at(self) -> None:
        self.assertEqual(segment_at(self.segments, 4).pid, IDLE_PID)
        self.assertEqual(segment_at(self.segments, 0).pid, 1)
        self.assertIsNone(segment_at(self.segments, 6))

    def test_segments_in_range(self) -> None:
        found = segments_in_range(self.segments, 2, 5)
        self.assertEqual([segment.start_tick for segment in found], [0, 3])

    def test_group_by_pid(self) -> None:
        groups = group_by_pid(self.segments)
        self.assertEqual(len(groups[1]), 2)
        self.assertEqual(len(groups[IDLE_PID]), 1)

    def test_merge_segments_does_not_mutate_input(self) -> None:
        pieces = [Segment(pid=2, start_tick=0, end_tick=1), Segment(pid=2, start_tick=1, end_tick=3)]
        merged = merge_segments(pieces)
        self.assertEqual([(s.start_tick, s.end_tick) for s in merged], [(0, 3)])
        self.assertEqual(pieces[0].end_tick, 1)


if __name__ == "__main__":
    unittest.main()
