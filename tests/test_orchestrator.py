import json
import logging
import re
from datetime import datetime, timedelta

import pytest

from family_organizer.extraction import orchestrator, resolve_temporal_extraction
from family_organizer.extraction.temporal import format_datetime

PROSE = ('garden fence paint ' * 5)[:80]


def _events(*events, **meta):
    return json.dumps({'events': list(events), **meta}, ensure_ascii=False)


def test_plain_text_falls_back_to_one_event(reference, tz):
    env = resolve_temporal_extraction('明天下午3點開會', reference)
    assert len(env.records) == 1
    event = env.records[0]
    assert event.title == '明天下午3點開會'
    assert format_datetime(event.start_time) == '2024-01-02 15:00:00'
    assert format_datetime(event.end_time) == '2024-01-02 16:00:00'
    assert event.is_recurring is False
    assert event.confidence == 0.5
    assert env.confidence == 0.3
    assert env.summary.startswith('fallback: no_json')


def test_fenced_json_event(reference, tz):
    raw = '```json {"events":[{"title":"Gym","startTime":"2024-01-05 07:00:00"}]} ```'
    env = resolve_temporal_extraction(raw, reference)
    assert len(env.records) == 1
    event = env.records[0]
    assert event.title == 'Gym'
    assert event.start_time == datetime(2024, 1, 5, 7, 0, tzinfo=tz)
    assert event.end_time == datetime(2024, 1, 5, 8, 0, tzinfo=tz)
    assert event.confidence == 0.85
    assert env.confidence == 0.85
    assert env.summary == '1 event(s) extracted'
    assert re.match(r'^event_\d+_[0-9a-z]{9}$', event.id)


def test_long_prose_without_cues(reference):
    env = resolve_temporal_extraction(PROSE, reference)
    assert len(env.records) == 1
    event = env.records[0]
    assert event.title == PROSE[:50] + '...'
    assert event.confidence <= 0.5
    assert event.start_time == reference + timedelta(days=1)


def test_user_input_preferred_for_fallback(reference, tz):
    env = resolve_temporal_extraction('Sorry, I cannot help.', reference,
                                      user_input='明天下午3點開會')
    assert env.records[0].title == '明天下午3點開會'
    assert env.user_input == '明天下午3點開會'
    assert env.raw_response == 'Sorry, I cannot help.'


@pytest.mark.parametrize('raw', [
    '',
    None,
    'hello',
    '{"events": [{"foo": 1}]}',
    '{"events": "nope"}',
    '[1, 2, 3]',
    '{"events": [{"title": "X", "startTime": "2024-13-45 10:00:00"}]}',
    '{"events": [{"title": "X", "startTime": "2024-01-05 07:00:00", "endTime": 5}]}',
    '{"events": [{"title": ["X"], "startTime": {"a": 1}}]}',
    '{"events": [{"title": "X", "startTime": "2024-01-05 07:00:00", '
    '"recurrenceRule": {"frequency": "WEEKLY", "byDay": 17}}]}',
])
def test_never_raises(reference, raw):
    env = resolve_temporal_extraction(raw, reference)
    assert 0.0 <= env.confidence <= 1.0
    for event in env.records:
        assert event.start_time < event.end_time


def test_broken_start_is_repaired_to_next_occurrence(reference, tz):
    env = resolve_temporal_extraction(
        _events({'title': 'X', 'startTime': '2024-13-45 10:00:00'}), reference)
    assert env.records[0].start_time == datetime(2024, 1, 2, 10, 0, tzinfo=tz)


def test_far_start_keeps_clock_and_moves_near(reference, tz):
    env = resolve_temporal_extraction(
        _events({'title': 'X', 'startTime': '2026-06-01 09:00:00'}), reference)
    start = env.records[0].start_time
    assert start == datetime(2024, 1, 2, 9, 0, tzinfo=tz)
    assert abs(start - reference) <= timedelta(days=365)


def test_time_only_start(reference, tz):
    env = resolve_temporal_extraction(_events({'title': 'Call', 'startTime': '15:00'}), reference)
    assert env.records[0].start_time == datetime(2024, 1, 1, 15, 0, tzinfo=tz)


def test_relative_start_phrase(reference, tz):
    env = resolve_temporal_extraction(
        _events({'title': 'Piano', 'startTime': '下週三下午3點'}), reference)
    assert env.records[0].start_time == datetime(2024, 1, 10, 15, 0, tzinfo=tz)


def test_separate_date_and_time_fields(reference, tz):
    env = resolve_temporal_extraction(
        _events({'title': 'A', 'date': '2024-01-03', 'time': '14:00'}), reference)
    assert env.records[0].start_time == datetime(2024, 1, 3, 14, 0, tzinfo=tz)


def test_date_field_with_time_only_start(reference, tz):
    env = resolve_temporal_extraction(
        _events({'title': 'A', 'startDate': '明天', 'startTime': '9:30'}), reference)
    assert env.records[0].start_time == datetime(2024, 1, 2, 9, 30, tzinfo=tz)


def test_end_time_variants(reference, tz):
    base = {'title': 'A', 'startTime': '2024-01-03 09:00:00'}
    cases = [
        ({}, datetime(2024, 1, 3, 10, 0, tzinfo=tz)),
        ({'endTime': '11:30'}, datetime(2024, 1, 3, 11, 30, tzinfo=tz)),
        ({'endTime': '2024-01-03 12:00:00'}, datetime(2024, 1, 3, 12, 0, tzinfo=tz)),
        ({'endTime': '2024-01-03 08:00:00'}, datetime(2024, 1, 3, 10, 0, tzinfo=tz)),
        ({'endTime': '2024-01-03 08:00:00', 'duration': 90},
         datetime(2024, 1, 3, 10, 30, tzinfo=tz)),
        ({'duration': '2 hours'}, datetime(2024, 1, 3, 11, 0, tzinfo=tz)),
        ({'endTime': '2024-02-30 10:00:00'}, datetime(2024, 1, 3, 10, 0, tzinfo=tz)),
    ]
    for extra, expected_end in cases:
        env = resolve_temporal_extraction(_events({**base, **extra}), reference)
        assert env.records[0].end_time == expected_end, extra


@pytest.mark.parametrize('start, end, expected', [
    # short overnight span rolls to the next day
    ('2024-01-03 22:00:00', '06:00', datetime(2024, 1, 4, 6, 0)),
    ('2024-01-03 08:00:00', '23:00', datetime(2024, 1, 3, 23, 0)),
    # clock at or before the start: discarded, default hour applies
    ('2024-01-03 15:00:00', '14:00', datetime(2024, 1, 3, 16, 0)),
    ('2024-01-03 15:00:00', '15:00', datetime(2024, 1, 3, 16, 0)),
])
def test_time_only_end(reference, tz, start, end, expected):
    env = resolve_temporal_extraction(
        _events({'title': 'Shift', 'startTime': start, 'endTime': end}), reference)
    assert env.records[0].end_time == expected.replace(tzinfo=tz)


def test_dropped_records_are_summarised(reference):
    raw = _events({'title': 'A', 'startTime': '2024-01-03 09:00:00'},
                  {'startTime': '2024-01-03 09:00:00'},
                  {'title': 'C'})
    env = resolve_temporal_extraction(raw, reference)
    assert [e.title for e in env.records] == ['A']
    assert 'missing_title x1' in env.summary
    assert 'missing_start x1' in env.summary


def test_all_candidates_unusable_falls_back_to_user_input(reference, tz):
    env = resolve_temporal_extraction(_events({'title': 'A'}), reference,
                                      user_input='明天下午3點開會')
    assert len(env.records) == 1
    assert env.records[0].start_time == datetime(2024, 1, 2, 15, 0, tzinfo=tz)
    assert env.records[0].confidence == 0.4
    assert env.confidence == 0.3
    assert env.summary.startswith('fallback: empty_extraction')
    assert 'missing_start x1' in env.summary


def test_all_candidates_unusable_with_trivial_input(reference):
    env = resolve_temporal_extraction(_events({'title': 'A'}), reference, user_input='hi')
    assert env.records == []
    assert env.confidence == 0.85


def test_no_candidates_is_an_empty_result(reference):
    env = resolve_temporal_extraction('{"events": []}', reference, user_input='明天下午3點開會')
    assert env.records == []
    assert env.confidence == 0.85


def test_parse_error_falls_back(reference, tz):
    raw = '{"events": [ {"title": "A" "x"} ]}'
    env = resolve_temporal_extraction(raw, reference, user_input='明天下午3點開會')
    assert env.records[0].confidence == 0.3
    assert env.confidence == 0.2
    assert env.summary.startswith('fallback: parse_error: ')
    assert "Expecting ',' delimiter" in env.summary


def test_failure_while_validating_falls_back(monkeypatch, reference, caplog):
    def boom(text):
        raise RuntimeError('boom')

    monkeypatch.setattr(orchestrator, '_is_substantial', boom)
    with caplog.at_level(logging.ERROR, logger=orchestrator.__name__):
        env = resolve_temporal_extraction(_events({'title': 'A'}), reference,
                                          user_input='明天下午3點開會')
    assert 'failed in state validating' in caplog.text
    assert env.summary == 'fallback: internal_error'
    assert env.records[0].confidence == 0.3


def test_confidences_from_payload(reference):
    raw = _events({'title': 'A', 'startTime': '2024-01-03 09:00:00', 'confidence': 0.6},
                  {'title': 'B', 'startTime': '2024-01-03 10:00:00'},
                  confidence=0.7, summary='two things')
    env = resolve_temporal_extraction(raw, reference)
    assert [e.confidence for e in env.records] == [0.6, 0.7]
    assert env.confidence == 0.7
    assert env.summary == 'two things'


def test_singular_wrapper_and_aliases(reference):
    raw = json.dumps({'event': {'name': 'Dentist', 'start': '2024-01-03 09:00:00',
                                'place': 'Clinic', 'notes': 'bring card'}})
    event = resolve_temporal_extraction(raw, reference).records[0]
    assert (event.title, event.location, event.description) == ('Dentist', 'Clinic', 'bring card')


def test_unknown_keys_are_carried(reference):
    raw = _events({'title': 'A', 'startTime': '2024-01-03 09:00:00', 'color': 'blue'})
    event = resolve_temporal_extraction(raw, reference).records[0]
    assert event.model_extra['color'] == 'blue'
    assert event.model_dump(by_alias=True)['color'] == 'blue'


def test_recurrence_rule_string(reference):
    raw = _events({'title': 'Piano', 'startTime': '2024-01-03 17:00:00',
                   'recurrenceRule': 'RRULE:FREQ=WEEKLY;BYDAY=WE'})
    event = resolve_temporal_extraction(raw, reference).records[0]
    assert event.is_recurring is True
    assert event.recurrence_rule.frequency == 'WEEKLY'
    assert event.recurrence_rule.by_day == ['WE']
    assert event.recurring_pattern == 'every week on Wednesday'


def test_recurring_pattern_without_rule(reference):
    raw = _events({'title': 'Piano', 'startTime': '2024-01-03 17:00:00',
                   'isRecurring': True, 'recurringPattern': 'weekly'})
    event = resolve_temporal_extraction(raw, reference).records[0]
    assert event.recurrence_rule.frequency == 'WEEKLY'
    assert event.recurring_pattern == 'weekly'


def test_invalid_recurrence_is_dropped(reference):
    raw = _events({'title': 'Piano', 'startTime': '2024-01-03 17:00:00',
                   'recurrenceRule': {'frequency': 'sometimes'}})
    event = resolve_temporal_extraction(raw, reference).records[0]
    assert event.recurrence_rule is None
    assert event.is_recurring is False


def test_naive_reference_gets_default_zone():
    env = resolve_temporal_extraction('{"title": "A", "startTime": "2024-01-03 09:00:00"}',
                                      datetime(2024, 1, 1, 10, 0))
    assert str(env.records[0].start_time.tzinfo) == 'Asia/Taipei'


def test_starts_stay_within_a_year(reference):
    raws = [
        _events({'title': 'A', 'startTime': '2031-01-01 09:00:00'}),
        _events({'title': 'B', 'startTime': '2023-01-01 09:00:00'}),
        _events({'title': 'C', 'startTime': '2024/01/02 15:00'}),
        _events({'title': 'D', 'startTime': 'next friday 3pm'}),
    ]
    for raw in raws:
        for event in resolve_temporal_extraction(raw, reference).records:
            assert abs(event.start_time - reference) <= timedelta(days=365)
            assert event.start_time < event.end_time


def test_serialised_shape(reference):
    raw = _events({'title': 'Gym', 'startTime': '2024-01-05 07:00:00'})
    data = resolve_temporal_extraction(raw, reference).model_dump(mode='json', by_alias=True)
    assert set(data) == {'records', 'summary', 'confidence', 'rawResponse', 'userInput'}
    record = data['records'][0]
    assert record['startTime'] == '2024-01-05T07:00:00+08:00'
    assert record['endTime'] == '2024-01-05T08:00:00+08:00'
    assert record['isRecurring'] is False
