import os
import unittest
from datetime import date, datetime
from types import SimpleNamespace

from emby_stats.data_processing import (
    build_period_series,
    clean_genre,
    genre_totals,
    parse_genres,
    peak_hour,
    real_duration,
    real_play_count,
    top_entries,
)


def _record(played_at, play_count=1, duration=600, position=0, genres=None):
    return SimpleNamespace(
        played_at=played_at,
        play_count=play_count,
        duration=duration,
        playback_position=position,
        genres=genres,
    )


class RealDurationTests(unittest.TestCase):
    def test_completed_plays_are_multiplied_and_position_added(self):
        self.assertEqual(real_duration(3, 600, 50), 1850)
        self.assertEqual(real_play_count(3, 50), 3)

    def test_unfinished_watch_counts_position_and_one_play(self):
        self.assertEqual(real_duration(0, 600, 120), 120)
        self.assertEqual(real_play_count(0, 120), 1)

    def test_untouched_item_counts_nothing(self):
        self.assertEqual(real_duration(None, 600, None), 0)
        self.assertEqual(real_play_count(0, 0), 0)


class GenreTests(unittest.TestCase):
    def test_clean_genre_rejects_system_tags(self):
        self.assertEqual(clean_genre('  Drama '), 'Drama')
        self.assertIsNone(clean_genre(''))
        self.assertIsNone(clean_genre('Studio: Acme'))
        self.assertIsNone(clean_genre('A very long genre name indeed'))
        self.assertIsNone(clean_genre(42))

    def test_parse_genres_tolerates_malformed_data(self):
        self.assertEqual(parse_genres('["Drama", "Studio: Acme", "Comedy"]'), ['Drama', 'Comedy'])
        self.assertEqual(parse_genres('not json'), [])
        self.assertEqual(parse_genres('{"Drama": 1}'), [])
        self.assertEqual(parse_genres(None), [])

    def test_genre_totals_ranked_by_duration(self):
        records = [
            _record(datetime(2024, 1, 1), genres='["Drama", "Comedy"]'),
            _record(datetime(2024, 1, 2), play_count=2, genres='["Drama"]'),
            _record(datetime(2024, 1, 3), genres='broken'),
        ]

        totals = genre_totals(records)
        ranked = top_entries(totals, 'duration', 1, 'genre')

        self.assertEqual(totals['Drama'], {'duration': 1800, 'count': 2})
        self.assertEqual(totals['Comedy'], {'duration': 600, 'count': 1})
        self.assertEqual(ranked, [{'genre': 'Drama', 'duration': 1800, 'count': 2}])


class PeakHourTests(unittest.TestCase):
    def test_ties_go_to_earliest_hour(self):
        hourly = [0] * 24
        hourly[9] = 5
        hourly[20] = 5
        self.assertEqual(peak_hour(hourly), 9)

    def test_all_zero_distribution_is_hour_zero(self):
        self.assertEqual(peak_hour([0] * 24), 0)


class PeriodSeriesTests(unittest.TestCase):
    def setUp(self):
        self.old_tz = os.environ.get('TZ')
        os.environ['TZ'] = 'UTC'

    def tearDown(self):
        if self.old_tz is None:
            os.environ.pop('TZ', None)
        else:
            os.environ['TZ'] = self.old_tz

    def test_daily_series_fills_missing_days_with_zero(self):
        records = [
            _record(datetime(2024, 1, 1, 20, 0)),
            _record(datetime(2024, 1, 1, 22, 0), play_count=0, position=120),
            _record(datetime(2024, 1, 3, 8, 0), play_count=2),
        ]

        series = build_period_series(records, date(2024, 1, 1), date(2024, 1, 4))

        self.assertEqual(list(series['label']), ['2024-01-01', '2024-01-02', '2024-01-03', '2024-01-04'])
        self.assertEqual(list(series['duration']), [720, 0, 1200, 0])
        self.assertEqual(list(series['count']), [2, 0, 1, 0])
        self.assertEqual(list(series['plays']), [2, 0, 2, 0])

    def test_weekly_series_starts_on_monday(self):
        records = [_record(datetime(2024, 1, 7, 12, 0)), _record(datetime(2024, 1, 8, 12, 0))]

        series = build_period_series(records, date(2024, 1, 1), date(2024, 1, 14), granularity='week')

        self.assertEqual(list(series['label']), ['2024-01-01', '2024-01-08'])
        self.assertEqual(list(series['count']), [1, 1])

    def test_empty_input_still_produces_every_period(self):
        series = build_period_series([], date(2024, 1, 1), date(2024, 3, 31), granularity='month')

        self.assertEqual(len(series), 3)
        self.assertEqual(int(series['duration'].sum()), 0)

    def test_unknown_granularity_is_rejected(self):
        with self.assertRaises(ValueError):
            build_period_series([], date(2024, 1, 1), date(2024, 1, 2), granularity='year')


if __name__ == '__main__':
    unittest.main()
