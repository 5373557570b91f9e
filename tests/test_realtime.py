import pytest

import scoring
from app import app as flask_app
from conftest import batch
from realtime import ChangeFeed, change_feed, socketio


def test_publish_assigns_sequence_per_stream():
    feed = ChangeFeed(maxlen=10)

    first = feed.publish('scores', 'score_submitted', {'judge_id': 1})
    second = feed.publish('scores', 'score_submitted', {'judge_id': 2})
    other = feed.publish('locks', 'created')

    assert (first['seq'], second['seq'], other['seq']) == (1, 2, 1)
    assert feed.latest('scores') == 2


def test_replay_after_sequence():
    feed = ChangeFeed(maxlen=10)
    for n in range(4):
        feed.publish('activity', 'appended', {'n': n})

    events, complete = feed.replay('activity', since=2)

    assert complete is True
    assert [event['payload']['n'] for event in events] == [2, 3]


def test_replay_reports_gap_after_eviction():
    feed = ChangeFeed(maxlen=3)
    for n in range(6):
        feed.publish('locks', 'created', {'n': n})

    events, complete = feed.replay('locks', since=1)
    assert complete is False
    assert [event['seq'] for event in events] == [4, 5, 6]

    events, complete = feed.replay('locks', since=3)
    assert complete is True


def test_replay_from_future_sequence_requires_refetch():
    feed = ChangeFeed()
    feed.publish('scores', 'score_submitted')

    events, complete = feed.replay('scores', since=50)

    assert events == []
    assert complete is False


def test_unknown_stream_is_rejected():
    with pytest.raises(KeyError):
        ChangeFeed().publish('judges', 'created')


def test_submission_publishes_score_lock_and_activity_changes(category, judges, contestants):
    scoring.submit_category(judges[0].id, category.id, contestants[0].id, batch(category, [8, 9, 10]))

    scores, _ = change_feed.replay('scores')
    lock_events, _ = change_feed.replay('locks')
    activity_events, _ = change_feed.replay('activity')

    assert [event['action'] for event in scores] == ['score_submitted']
    assert lock_events[0]['payload']['contestant_id'] == contestants[0].id
    assert activity_events[0]['payload']['action_type'] == 'score_submitted'


def test_subscriber_receives_activity_events(client, category, judges, contestants):
    with client.session_transaction() as sess:
        sess['judge_logged_in'] = True
        sess['judge_id'] = judges[0].id
    sio = socketio.test_client(flask_app, flask_test_client=client)

    ack = sio.emit('subscribe', {'streams': ['activity', 'bogus']}, callback=True)
    assert ack['success'] is True
    assert ack['streams'] == ['activity']

    scoring.submit_category(judges[0].id, category.id, contestants[0].id, batch(category, [8, 9, 10]))

    received = [packet for packet in sio.get_received() if packet['name'] == 'activity']
    assert received
    assert received[-1]['args'][0]['payload']['action_type'] == 'score_submitted'
    sio.disconnect()


def test_subscribe_requires_login(client):
    sio = socketio.test_client(flask_app, flask_test_client=client)

    ack = sio.emit('subscribe', {'streams': ['scores']}, callback=True)

    assert ack['success'] is False
    sio.disconnect()
