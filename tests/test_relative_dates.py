from datetime import date, datetime

import pytest

from family_organizer.extraction.relative_dates import (
    find_relative_date,
    format_date_string,
    resolve_month_day,
    resolve_natural_datetime,
    resolve_relative_date,
    resolve_weekday,
    resolve_workday,
)

MONDAY = date(2024, 1, 1)
SATURDAY = date(2024, 1, 6)


def test_this_weekday_equal_to_today_rolls_a_week():
    # 1 = Monday
    assert resolve_weekday(1, MONDAY, 0) == date(2024, 1, 8)


def test_next_and_next_next_weekday():
    assert resolve_weekday(3, MONDAY, 1) == date(2024, 1, 10)
    assert resolve_weekday(1, MONDAY, 2) == date(2024, 1, 15)


def test_workday():
    assert resolve_workday(MONDAY) == MONDAY
    assert resolve_workday(SATURDAY) == date(2024, 1, 8)
    assert resolve_workday(date(2024, 1, 7)) == date(2024, 1, 8)


@pytest.mark.parametrize('phrase,expected', [
    ('今天', date(2024, 1, 1)),
    ('today', date(2024, 1, 1)),
    ('tonight', date(2024, 1, 1)),
    ('明天', date(2024, 1, 2)),
    ('Tomorrow', date(2024, 1, 2)),
    ('後天', date(2024, 1, 3)),
    ('day after tomorrow', date(2024, 1, 3)),
    ('大後天', date(2024, 1, 4)),
    ('in 3 days', date(2024, 1, 4)),
    ('3天後', date(2024, 1, 4)),
    ('週三', date(2024, 1, 3)),
    ('星期一', date(2024, 1, 8)),
    ('星期天', date(2024, 1, 7)),
    ('this wednesday', date(2024, 1, 3)),
    ('friday', date(2024, 1, 5)),
    ('下週三', date(2024, 1, 10)),
    ('下週一', date(2024, 1, 8)),
    ('next friday', date(2024, 1, 12)),
    ('下下週一', date(2024, 1, 15)),
    ('週末', date(2024, 1, 6)),
    ('this weekend', date(2024, 1, 6)),
    ('下週末', date(2024, 1, 13)),
    ('工作日', date(2024, 1, 1)),
    ('3月15日', date(2024, 3, 15)),
    ('1/15', date(2024, 1, 15)),
    ('March 15', date(2024, 3, 15)),
    ('15 march', date(2024, 3, 15)),
    ('2024年3月15日', date(2024, 3, 15)),
    ('2024/03/15', date(2024, 3, 15)),
    ('15號', date(2024, 1, 15)),
    ('the 15th', date(2024, 1, 15)),
])
def test_resolve_relative_date(phrase, expected):
    assert resolve_relative_date(phrase, MONDAY) == expected


@pytest.mark.parametrize('phrase', ['someday', 'fri', '', None, '2024-13-45'])
def test_unresolvable_phrases(phrase):
    assert resolve_relative_date(phrase, MONDAY) is None


def test_month_day_already_passed_rolls_to_next_year():
    assert resolve_relative_date('3月15日', date(2024, 3, 20)) == date(2025, 3, 15)


def test_feb_29_without_leap_year_is_unresolvable():
    assert resolve_month_day(2, 29, date(2024, 3, 1)) is None
    assert resolve_month_day(2, 29, date(2024, 1, 1)) == date(2024, 2, 29)


def test_day_of_month_already_passed_rolls_to_next_month():
    assert resolve_relative_date('15號', date(2024, 1, 20)) == date(2024, 2, 15)
    assert resolve_relative_date('15號', date(2024, 12, 20)) == date(2025, 1, 15)


def test_find_relative_date_in_sentence():
    assert find_relative_date("let's meet next friday at 3pm", MONDAY) == date(2024, 1, 12)
    assert find_relative_date('明天下午3點開會', MONDAY) == date(2024, 1, 2)
    assert find_relative_date('nothing to see', MONDAY) is None


def test_format_date_string():
    assert format_date_string('明天', MONDAY) == '2024-01-02'
    assert format_date_string('2024-05-01', MONDAY) == '2024-05-01'
    assert format_date_string('2024-05-01T09:00:00Z', MONDAY) == '2024-05-01'
    assert format_date_string('whenever', MONDAY) == 'whenever'
    assert format_date_string('  ', MONDAY) is None
    assert format_date_string(None, MONDAY) is None


def test_natural_datetime_date_and_time(reference, tz):
    got = resolve_natural_datetime('明天下午3點開會', reference)
    assert got == datetime(2024, 1, 2, 15, 0, tzinfo=tz)


def test_natural_datetime_time_only(reference, tz):
    assert resolve_natural_datetime('下午3點', reference) == datetime(2024, 1, 1, 15, 0, tzinfo=tz)
    assert resolve_natural_datetime('8am', reference) == datetime(2024, 1, 2, 8, 0, tzinfo=tz)


def test_natural_datetime_date_only_keeps_reference_clock(reference, tz):
    assert resolve_natural_datetime('明天', reference) == datetime(2024, 1, 2, 10, 0, tzinfo=tz)
    got = resolve_natural_datetime('明天', reference, default_time=(9, 30))
    assert got == datetime(2024, 1, 2, 9, 30, tzinfo=tz)


def test_natural_datetime_without_cues(reference):
    assert resolve_natural_datetime('buy paint', reference) is None
