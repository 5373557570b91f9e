import threading

import pytest
from flask import Flask

import activity
import locks
import scoring
from conftest import batch, make_category, make_contestant, make_judge
from errors import LockedError, NotFoundError, ValidationError
from models import Score, ScoreHistory, SubmissionLock, db

ADMIN = {'id': 1, 'type': 'admin', 'name': 'admin'}


def test_submit_category_scenario(category, judges, contestants):
    judge, contestant = judges[0], contestants[0]

    result = scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [8, 9, 10]))

    assert result['action_type'] == 'score_submitted'
    assert result['total_score'] == pytest.approx(8.7)
    assert [s['weighted_score'] for s in result['scores']] == pytest.approx([4.0, 2.7, 2.0])
    assert locks.is_locked(judge.id, category.id, contestant.id)
    assert Score.query.filter_by(judge_id=judge.id, contestant_id=contestant.id).count() == 3

    entry = activity.list_recent(limit=1)[0]
    assert entry.action_type == 'score_submitted'
    assert entry.actor_type == 'judge'
    assert entry.actor_id == judge.id
    assert entry.meta['contestant_name'] == contestant.name
    assert entry.meta['category_label'] == category.label
    assert entry.description


def test_resubmit_while_locked_is_rejected(category, judges, contestants):
    judge, contestant = judges[0], contestants[0]
    scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [8, 9, 10]))

    with pytest.raises(LockedError):
        scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [1, 1, 1]))

    raw = sorted(s.raw_score for s in scoring.scores_for(judge.id, category.id, contestant.id))
    assert raw == [8, 9, 10]


def test_locked_check_comes_before_validation(category, judges, contestants):
    judge, contestant = judges[0], contestants[0]
    scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [8, 9, 10]))

    with pytest.raises(LockedError):
        scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [99, 9, 10]))


@pytest.mark.parametrize('values', [
    [8, 9, 11],
    [8, -1, 10],
    [8, 'nine', 10],
    [8, None, 10],
])
def test_invalid_value_rejects_whole_batch(category, judges, contestants, values):
    judge, contestant = judges[0], contestants[0]

    with pytest.raises(ValidationError) as excinfo:
        scoring.submit_category(judge.id, category.id, contestant.id, batch(category, values))

    bad_index = next(i for i, v in enumerate(values) if not isinstance(v, int) or v < 0 or v > 10)
    assert excinfo.value.criteria_id == category.criteria[bad_index].id
    assert Score.query.count() == 0
    assert ScoreHistory.query.count() == 0
    assert not locks.is_locked(judge.id, category.id, contestant.id)
    assert activity.list_recent() == []


def test_missing_criterion_is_rejected(category, judges, contestants):
    entries = batch(category, [8, 9, 10])[:2]

    with pytest.raises(ValidationError) as excinfo:
        scoring.submit_category(judges[0].id, category.id, contestants[0].id, entries)

    assert excinfo.value.criteria_id == category.criteria[2].id
    assert Score.query.count() == 0


def test_duplicate_and_foreign_criteria_are_rejected(category, judges, contestants):
    entries = batch(category, [8, 9, 10])
    duplicated = entries + [dict(entries[0])]
    foreign = entries + [{'criteria_id': 9999, 'raw_score': 5}]

    with pytest.raises(ValidationError):
        scoring.submit_category(judges[0].id, category.id, contestants[0].id, duplicated)
    with pytest.raises(ValidationError) as excinfo:
        scoring.submit_category(judges[0].id, category.id, contestants[0].id, foreign)

    assert excinfo.value.criteria_id == 9999
    assert Score.query.count() == 0


def test_boundary_values_are_accepted(category, judges, contestants):
    result = scoring.submit_category(judges[0].id, category.id, contestants[0].id, batch(category, [0, 10, '7.5']))

    assert result['total_score'] == pytest.approx(0 + 3.0 + 1.5)


def test_unknown_references_raise_not_found(category, judges, contestants):
    with pytest.raises(NotFoundError):
        scoring.submit_category(999, category.id, contestants[0].id, batch(category, [1, 1, 1]))
    with pytest.raises(NotFoundError):
        scoring.submit_category(judges[0].id, 999, contestants[0].id, [])
    with pytest.raises(NotFoundError):
        scoring.submit_category(judges[0].id, category.id, 999, batch(category, [1, 1, 1]))


def test_unlock_then_resubmit_records_update(category, judges, contestants):
    judge, contestant = judges[0], contestants[0]
    scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [8, 9, 10]))

    locks.remove_lock(judge.id, category.id, contestant.id, actor=ADMIN)
    assert activity.list_recent(limit=1)[0].action_type == 'lock_removed'

    result = scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [6, 6, 6]))

    assert result['action_type'] == 'score_updated'
    assert result['total_score'] == pytest.approx(6.0)
    assert Score.query.filter_by(judge_id=judge.id, contestant_id=contestant.id).count() == 3
    assert locks.is_locked(judge.id, category.id, contestant.id)
    assert [e.action_type for e in activity.list_recent()] == [
        'score_updated', 'lock_removed', 'score_submitted'
    ]

    updates = ScoreHistory.query.filter_by(change_type='updated').all()
    assert len(updates) == 3
    assert sorted(h.old_raw_score for h in updates) == [8, 9, 10]
    assert all(h.new_raw_score == 6 for h in updates)


def test_losing_a_lock_race_rolls_back_scores(category, judges, contestants, monkeypatch):
    judge, contestant = judges[0], contestants[0]
    scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [8, 9, 10]))

    # Both requests passed the lock check before either inserted its lock
    monkeypatch.setattr(locks, 'is_locked', lambda *args: False)
    with pytest.raises(LockedError):
        scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [1, 2, 3]))

    raw = sorted(s.raw_score for s in scoring.scores_for(judge.id, category.id, contestant.id))
    assert raw == [8, 9, 10]
    assert ScoreHistory.query.filter_by(change_type='updated').count() == 0
    assert len(locks.locks_for(judge_id=judge.id)) == 1
    assert [e.action_type for e in activity.list_recent()] == ['score_submitted']


def test_log_failure_does_not_fail_submission(category, judges, contestants, monkeypatch):
    judge, contestant = judges[0], contestants[0]

    def broken_write(fields):
        raise RuntimeError('activity table unavailable')

    monkeypatch.setattr(activity, '_write', broken_write)
    result = scoring.submit_category(judge.id, category.id, contestant.id, batch(category, [8, 9, 10]))

    assert result['action_type'] == 'score_submitted'
    assert locks.is_locked(judge.id, category.id, contestant.id)
    assert Score.query.count() == 3
    assert activity.pending_count() == 1


def test_concurrent_submissions_lock_exactly_once(tmp_path):
    race_app = Flask(__name__)
    race_app.config.update(
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'race.db'}",
        SQLALCHEMY_ENGINE_OPTIONS={'connect_args': {'timeout': 30}},
    )
    db.init_app(race_app)
    with race_app.app_context():
        db.create_all()
        category = make_category('runway', 'Runway', [(10, 0.5), (10, 0.3), (10, 0.2)])
        key = (make_judge(1, 'Judge One').id, category.id, make_contestant(1).id)
        entries = batch(category, [8, 9, 10])

    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []

    def submit():
        with race_app.app_context():
            barrier.wait()
            try:
                scoring.submit_category(*key, entries)
                outcomes.append('submitted')
            except LockedError:
                outcomes.append('locked')

    threads = [threading.Thread(target=submit) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ['locked'] * (workers - 1) + ['submitted']
    with race_app.app_context():
        assert SubmissionLock.query.count() == 1
        assert Score.query.count() == 3
        db.engine.dispose()
