from __future__ import annotations

import unittest

from sched_dash.application.metrics import reconstruct_metrics
from sched_dash.domain.events import SchedulerEvent


def _event(sequence: int, kind: str, pid=None, tick=None, **payload) -> SchedulerEvent:
    return SchedulerEvent(kind=kind, pid=pid, tick=tick, sequence=sequence, run_id="r", **payload)


class MetricsReconstructionTests(unittest.TestCase):
    def test_single_process_run_to_completion(self) -> None:
        report = reconstruct_metrics(
            [
                _event(0, "job_arrived", 1, 0, burst=5),
                _event(1, "job_started", 1, 0),
                _event(2, "job_finished", 1, 5),
            ]
        )

        metrics = report.processes[1]
        self.assertEqual(metrics.burst_accumulated, 5)
        self.assertEqual(metrics.waiting, 0)
        self.assertEqual(metrics.turnaround, 5)
        self.assertEqual(metrics.response, 0)
        self.assertTrue(metrics.is_finished)

    def test_preempted_process_accumulates_bursts(self) -> None:
        report = reconstruct_metrics(
            [
                _event(0, "job_arrived", 1, 0),
                _event(1, "job_arrived", 2, 1),
                _event(2, "job_started", 1, 0),
                _event(3, "job_preempted", 1, 3),
                _event(4, "job_started", 2, 3),
                _event(5, "job_finished", 2, 5),
                _event(6, "job_resumed", 1, 5),
                _event(7, "job_finished", 1, 7),
            ]
        )

        first, second = report.processes[1], report.processes[2]
        self.assertEqual((first.burst_accumulated, first.turnaround, first.waiting, first.response), (5, 7, 2, 0))
        self.assertEqual((second.burst_accumulated, second.turnaround, second.waiting, second.response), (2, 4, 2, 2))
        self.assertEqual(report.averages_all.waiting, 2.0)
        self.assertEqual(report.averages_all.turnaround, 5.5)
        self.assertEqual(report.averages_all.response, 1.0)
        self.assertEqual(report.now, 7)

    def test_unfinished_process_uses_last_tick(self) -> None:
        report = reconstruct_metrics(
            [
                _event(0, "job_arrived", 1, 0),
                _event(1, "job_started", 1, 1),
                _event(2, "tick", None, 4),
            ]
        )

        metrics = report.processes[1]
        self.assertIsNone(metrics.finish_time)
        self.assertEqual(metrics.burst_accumulated, 3)
        self.assertEqual(metrics.turnaround, 4)
        self.assertEqual(metrics.waiting, 1)
        self.assertEqual(report.averages_finished.process_count, 0)
        self.assertEqual(report.averages_all.process_count, 1)

    def test_response_average_skips_processes_that_never_ran(self) -> None:
        report = reconstruct_metrics(
            [
                _event(0, "job_arrived", 1, 0),
                _event(1, "job_arrived", 2, 0),
                _event(2, "job_started", 1, 2),
                _event(3, "job_finished", 1, 4),
            ]
        )

        self.assertIsNone(report.processes[2].response)
        self.assertEqual(report.averages_all.responded_count, 1)
        self.assertEqual(report.averages_all.response, 2.0)
        self.assertEqual(report.averages_finished.process_count, 1)
        self.assertEqual(report.averages_finished.turnaround, 4.0)

    def test_earliest_arrival_wins(self) -> None:
        report = reconstruct_metrics(
            [
                _event(0, "gantt_slice", 1, 4),
                _event(1, "job_arrived", 1, 4, arrival=2),
                _event(2, "job_started", 1, 4),
                _event(3, "job_finished", 1, 6),
            ]
        )
        self.assertEqual(report.processes[1].arrival, 2)
        self.assertEqual(report.processes[1].response, 2)

    def test_dispatching_another_pid_closes_the_running_interval(self) -> None:
        report = reconstruct_metrics(
            [
                _event(0, "job_started", 1, 0),
                _event(1, "context_switch", 2, 3),
                _event(2, "context_switch", None, 5),
                _event(3, "tick", None, 8),
            ]
        )

        self.assertEqual(report.processes[1].burst_accumulated, 3)
        self.assertEqual(report.processes[2].burst_accumulated, 2)
        self.assertEqual(report.processes[2].start_time, 3)

    def test_finish_without_open_interval_is_tolerated(self) -> None:
        report = reconstruct_metrics([_event(0, "job_finished", 3, 4)])

        metrics = report.processes[3]
        self.assertEqual(metrics.burst_accumulated, 0)
        self.assertEqual(metrics.finish_time, 4)
        self.assertIsNone(metrics.start_time)

    def test_process_without_any_tick_arrives_at_zero(self) -> None:
        report = reconstruct_metrics([_event(0, "starvation_warning", 5)])
        self.assertEqual(report.processes[5].arrival, 0)

    def test_unknown_and_raw_events_do_not_change_the_report(self) -> None:
        events = [
            _event(0, "job_arrived", 1, 0),
            _event(1, "job_started", 1, 0),
            _event(2, "job_finished", 1, 3),
        ]
        noisy = [
            *events,
            _event(3, "queue_snapshot", 99, 1),
            _event(4, "raw", 7, 2, text='{"pid": 7, "tick": 2, "msg": "hello"}'),
            _event(5, "queue_snapshot", 1, 9),
        ]

        report = reconstruct_metrics(noisy)

        self.assertEqual(list(report.processes), [1])
        self.assertEqual(report, reconstruct_metrics(events))
        self.assertEqual(report.averages_all.process_count, 1)

    def test_reconstruction_is_pure(self) -> None:
        events = [_event(0, "job_started", 1, 0), _event(1, "job_preempted", 1, 2)]
        self.assertEqual(reconstruct_metrics(events), reconstruct_metrics(events))

    def test_report_serializes_both_average_variants(self) -> None:
        payload = reconstruct_metrics([_event(0, "job_started", 1, 0), _event(1, "job_finished", 1, 2)]).to_dict()
        self.assertEqual(set(payload["averages"]), {"all", "finished"})
        self.assertEqual(payload["processes"][0]["pid"], 1)


if __name__ == "__main__":
    unittest.main()
