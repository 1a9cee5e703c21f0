import unittest
from datetime import date, datetime, timedelta

import httpx

from app.services.holiday_calendar import (
    HolidayCalendar,
    HolidayLookup,
    buddhist_years_between,
    parse_feed_rows,
    to_buddhist_year,
)


class FakeClock:
    def __init__(self, value: datetime):
        self.value = value

    def __call__(self) -> datetime:
        return self.value


class CountingFetcher:
    def __init__(self, rows_by_year=None, error: Exception | None = None):
        self.rows_by_year = rows_by_year or {}
        self.error = error
        self.calls: list[int] = []

    def __call__(self, year_be: int):
        self.calls.append(year_be)
        if self.error is not None:
            raise self.error
        return self.rows_by_year.get(year_be, [])


class HolidayFeedParsingTests(unittest.TestCase):
    def test_buddhist_year_mapping(self):
        self.assertEqual(to_buddhist_year(date(2025, 4, 13)), 2568)
        self.assertEqual(buddhist_years_between(date(2024, 12, 30), date(2025, 1, 2)), [2567, 2568])

    def test_rows_are_converted_to_gregorian_dates(self):
        rows = parse_feed_rows(
            [
                {'Date': '2568-04-13', 'Title': 'Songkran Festival'},
                {'Date': '2568-01-01', 'Title': "New Year's Day"},
            ]
        )
        self.assertEqual([row.date for row in rows], ['2025-01-01', '2025-04-13'])
        self.assertEqual(rows[1].name, 'Songkran Festival')

    def test_malformed_rows_are_skipped(self):
        rows = parse_feed_rows(
            [
                {'Date': 'not-a-date', 'Title': 'Broken'},
                {'Date': '2568-02-30', 'Title': 'Impossible'},
                'garbage',
                {'Date': '2568-05-01', 'Title': 'Labour Day'},
                {'Date': '2568-05-01', 'Title': 'Labour Day'},
            ]
        )
        self.assertEqual([(row.date, row.name) for row in rows], [('2025-05-01', 'Labour Day')])

    def test_non_list_payload_rejected(self):
        with self.assertRaises(ValueError):
            parse_feed_rows({'Date': '2568-05-01'})


class HolidayCalendarTests(unittest.TestCase):
    def test_timeout_yields_empty_list_and_is_not_cached(self):
        fetcher = CountingFetcher(error=httpx.ConnectTimeout('timed out'))
        calendar = HolidayCalendar(fetcher=fetcher, clock=FakeClock(datetime(2025, 1, 1, 9, 0)))

        self.assertEqual(calendar.get_holidays([2568]), [])
        self.assertEqual(calendar.get_holidays([2568]), [])
        self.assertEqual(fetcher.calls, [2568, 2568])

    def test_http_error_degrades_to_no_holidays(self):
        fetcher = CountingFetcher(error=RuntimeError('feed down'))
        calendar = HolidayCalendar(fetcher=fetcher)
        self.assertEqual(calendar.holidays_between(date(2025, 1, 1), date(2025, 12, 31)), [])

    def test_cached_until_ttl_expires(self):
        clock = FakeClock(datetime(2025, 1, 1, 9, 0))
        fetcher = CountingFetcher({2568: [{'Date': '2568-04-13', 'Title': 'Songkran'}]})
        calendar = HolidayCalendar(fetcher=fetcher, clock=clock, ttl=timedelta(hours=24))

        self.assertEqual(len(calendar.get_holidays([2568])), 1)
        clock.value += timedelta(hours=23)
        self.assertEqual(len(calendar.get_holidays([2568])), 1)
        self.assertEqual(fetcher.calls, [2568])

        clock.value += timedelta(hours=2)
        calendar.get_holidays([2568])
        self.assertEqual(fetcher.calls, [2568, 2568])

    def test_failing_year_does_not_hide_other_years(self):
        class PartialFetcher:
            def __call__(self, year_be):
                if year_be == 2567:
                    raise httpx.ReadTimeout('slow')
                return [{'Date': '2568-01-01', 'Title': "New Year's Day"}]

        calendar = HolidayCalendar(fetcher=PartialFetcher())
        rows = calendar.holidays_between(date(2024, 12, 25), date(2025, 1, 5))
        self.assertEqual([row.date for row in rows], ['2025-01-01'])

    def test_holidays_between_filters_range(self):
        fetcher = CountingFetcher(
            {
                2568: [
                    {'Date': '2568-01-01', 'Title': "New Year's Day"},
                    {'Date': '2568-04-13', 'Title': 'Songkran'},
                ]
            }
        )
        calendar = HolidayCalendar(fetcher=fetcher)
        rows = calendar.holidays_between(date(2025, 4, 1), date(2025, 4, 30))
        self.assertEqual([row.as_dict() for row in rows], [{'date': '2025-04-13', 'name': 'Songkran'}])
        self.assertEqual(calendar.holidays_between(date(2025, 5, 1), date(2025, 4, 1)), [])

    def test_lookup_tries_a_failing_year_once(self):
        fetcher = CountingFetcher(error=httpx.ConnectTimeout('timed out'))
        lookup = HolidayLookup(HolidayCalendar(fetcher=fetcher))
        self.assertIsNone(lookup.name_for(date(2025, 1, 6)))
        self.assertIsNone(lookup.name_for(date(2025, 3, 6)))
        self.assertEqual(fetcher.calls, [2568])

    def test_invalidate_forces_refetch(self):
        fetcher = CountingFetcher({2568: []})
        calendar = HolidayCalendar(fetcher=fetcher)
        calendar.get_holidays([2568])
        calendar.invalidate(2568)
        calendar.get_holidays([2568])
        self.assertEqual(fetcher.calls, [2568, 2568])


if __name__ == '__main__':
    unittest.main()
