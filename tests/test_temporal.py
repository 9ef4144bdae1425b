from datetime import datetime

import pytest

from family_organizer.extraction.temporal import (
    extract_clock,
    find_time_of_day,
    format_datetime,
    infer_date_from_time,
    parse_time,
    parse_time_of_day,
)


@pytest.mark.parametrize('text,expected', [
    ('14:30', (14, 30)),
    ('7:05', (7, 5)),
    ('3:15 PM', (15, 15)),
    ('3pm', (15, 0)),
    ('12 am', (0, 0)),
    ('12pm', (12, 0)),
    ('下午3點', (15, 0)),
    ('下午3點半', (15, 30)),
    ('下午三點十五分', (15, 15)),
    ('晚上八點', (20, 0)),
    ('上午12點', (0, 0)),
    ('中午12點', (12, 0)),
    ('afternoon 3', (15, 0)),
    ('3 in the afternoon', (15, 0)),
    ('noon', (12, 0)),
    ('midnight', (0, 0)),
    ('1430', (14, 30)),
    ('930', (9, 30)),
])
def test_parse_time_of_day(text, expected):
    assert parse_time_of_day(text) == expected


@pytest.mark.parametrize('text', ['25:00', '13pm', 'soon', '', None])
def test_parse_time_of_day_rejects(text):
    assert parse_time_of_day(text) is None


def test_parse_canonical(reference, tz):
    assert parse_time('2024-01-05 07:00:00', reference) == datetime(2024, 1, 5, 7, 0, tzinfo=tz)


def test_parse_iso_naive(reference, tz):
    assert parse_time('2024-01-05T07:00:00', reference) == datetime(2024, 1, 5, 7, 0, tzinfo=tz)


def test_parse_iso_utc_is_converted(reference, tz):
    got = parse_time('2024-01-05T07:00:00Z', reference)
    assert got == datetime(2024, 1, 5, 15, 0, tzinfo=tz)


def test_parse_iso_with_offset(reference, tz):
    got = parse_time('2024-01-05 07:00:00+08:00', reference)
    assert got == datetime(2024, 1, 5, 7, 0, tzinfo=tz)


def test_parse_time_of_day_uses_reference_date(reference, tz):
    assert parse_time('下午3點', reference) == datetime(2024, 1, 1, 15, 0, tzinfo=tz)


@pytest.mark.parametrize('text', ['nonsense', '', None, '2024-02-30 10:00:00'])
def test_parse_time_unresolvable(reference, text):
    assert parse_time(text, reference) is None


@pytest.mark.parametrize('text', [
    '2024-01-05 07:00:00',
    '2024-02-29 23:59:59',
    '2025-12-31 00:00:00',
])
def test_canonical_format_round_trip(reference, text):
    assert format_datetime(parse_time(text, reference)) == text


def test_infer_date_from_time_later_today(reference, tz):
    assert infer_date_from_time(15, 0, reference) == datetime(2024, 1, 1, 15, 0, tzinfo=tz)


def test_infer_date_from_time_already_passed(reference, tz):
    assert infer_date_from_time(9, 0, reference) == datetime(2024, 1, 2, 9, 0, tzinfo=tz)
    # the current minute counts as passed
    assert infer_date_from_time(10, 0, reference) == datetime(2024, 1, 2, 10, 0, tzinfo=tz)


def test_find_time_of_day_in_sentence():
    assert find_time_of_day('明天下午3點開會') == (15, 0)
    assert find_time_of_day('dinner with Sam at 7:30pm tomorrow') == (19, 30)
    assert find_time_of_day('no time here') is None


def test_extract_clock_from_broken_timestamp():
    assert extract_clock('2024-02-30 10:00:00') == (10, 0)
    assert extract_clock('99:99') is None
