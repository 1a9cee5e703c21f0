import unittest

from freezegun import freeze_time

from app.metrics import (
    LogMetricsExporter,
    MetricsExporter,
    flush_metrics,
    metrics_snapshot,
    record_event,
    set_metrics_exporter,
    timed_service,
)


class CollectingExporter(MetricsExporter):
    def __init__(self):
        self.minutes = []

    def export_minute(self, *, minute_start, counts):
        self.minutes.append(counts)


class MetricsTests(unittest.TestCase):
    def setUp(self):
        self.exporter = CollectingExporter()
        set_metrics_exporter(self.exporter)
        flush_metrics()
        self.exporter.minutes.clear()

    def tearDown(self):
        set_metrics_exporter(LogMetricsExporter())

    @freeze_time('2025-01-06 09:00:30')
    def test_events_accumulate_until_flush(self):
        record_event('holiday_cache_miss')
        record_event('session_created', 4)
        record_event('session_skipped', 0)
        snapshot = metrics_snapshot()
        self.assertEqual(snapshot.get('session_created'), 4)
        self.assertNotIn('session_skipped', snapshot)

        flush_metrics()
        self.assertEqual(self.exporter.minutes[-1]['holiday_cache_miss'], 1)
        self.assertEqual(metrics_snapshot(), {})

    def test_timed_service_logs_slow_calls(self):
        @timed_service('calendar_view', threshold_ms=0)
        def slow_view():
            return 'done'

        with self.assertLogs('app.metrics', level='INFO') as captured:
            self.assertEqual(slow_view(), 'done')
        self.assertIn('service_timer label=calendar_view', captured.output[0])


if __name__ == '__main__':
    unittest.main()
