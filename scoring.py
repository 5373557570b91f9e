import logging
import math

from sqlalchemy.exc import IntegrityError

import activity
import locks
from errors import AlreadyLockedError, LockedError, NotFoundError, ValidationError
from models import Category, Contestant, Criteria, Judge, Score, ScoreHistory, db
from realtime import publish_change

logger = logging.getLogger(__name__)


def get_or_raise(model, object_id, label):
    instance = db.session.get(model, object_id) if object_id is not None else None
    if instance is None:
        raise NotFoundError(f'{label} not found.', **{f'{label.lower()}_id': object_id})
    return instance


def get_category_criteria(category_id):
    return Criteria.query.filter_by(category_id=category_id).order_by(Criteria.order, Criteria.id).all()


def parse_raw_score(value, criterion):
    if value is None or isinstance(value, bool):
        raise ValidationError(f'Score for "{criterion.label}" is required.', criteria_id=criterion.id)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Score for "{criterion.label}" must be a number.', criteria_id=criterion.id)
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f'Score for "{criterion.label}" must be a number.', criteria_id=criterion.id)
    if number < 0 or number > criterion.max_score:
        raise ValidationError(
            f'Score for "{criterion.label}" must be between 0 and {criterion.max_score:g}.',
            criteria_id=criterion.id
        )
    return number


def validate_batch(criteria, entries):
    """Check a whole category submission before anything is written.

    Every criterion of the category must appear exactly once with an
    in-range value. Returns ``{criteria_id: raw_score}``.
    """
    if not criteria:
        raise ValidationError('This category has no criteria to score.')
    if not isinstance(entries, (list, tuple)):
        raise ValidationError('Scores must be a list of criteria entries.')

    criteria_by_id = {criterion.id: criterion for criterion in criteria}
    values = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError('Each score entry must be an object.')
        try:
            criteria_id = int(entry.get('criteria_id'))
        except (TypeError, ValueError):
            raise ValidationError('Each score entry needs a criteria_id.', criteria_id=entry.get('criteria_id'))
        criterion = criteria_by_id.get(criteria_id)
        if criterion is None:
            raise ValidationError('Criterion does not belong to this category.', criteria_id=criteria_id)
        if criteria_id in values:
            raise ValidationError(f'"{criterion.label}" was scored more than once.', criteria_id=criteria_id)
        values[criteria_id] = parse_raw_score(entry.get('raw_score'), criterion)

    for criterion in criteria:
        if criterion.id not in values:
            raise ValidationError(f'Missing score for "{criterion.label}".', criteria_id=criterion.id)
    return values


def weighted_value(raw_score, criterion):
    return raw_score * criterion.weight


def stage_scores(judge, category, contestant, criteria, values, changed_by):
    existing = {
        score.criteria_id: score
        for score in Score.query.filter_by(
            judge_id=judge.id,
            category_id=category.id,
            contestant_id=contestant.id
        ).all()
    }
    staged = []
    history = []
    for criterion in criteria:
        raw_score = values[criterion.id]
        weighted = weighted_value(raw_score, criterion)
        score = existing.get(criterion.id)
        if score:
            history.append((score, 'updated', score.raw_score, score.weighted_score))
            score.raw_score = raw_score
            score.weighted_score = weighted
        else:
            score = Score(
                judge_id=judge.id,
                contestant_id=contestant.id,
                category_id=category.id,
                criteria_id=criterion.id,
                raw_score=raw_score,
                weighted_score=weighted
            )
            db.session.add(score)
            history.append((score, 'created', None, None))
        staged.append(score)

    db.session.flush()
    for score, change_type, old_raw, old_weighted in history:
        db.session.add(ScoreHistory(
            score_id=score.id,
            judge_id=score.judge_id,
            contestant_id=score.contestant_id,
            category_id=score.category_id,
            criteria_id=score.criteria_id,
            old_raw_score=old_raw,
            new_raw_score=score.raw_score,
            old_weighted_score=old_weighted,
            new_weighted_score=score.weighted_score,
            changed_by=changed_by,
            change_type=change_type
        ))
    return staged, bool(existing)


def submit_category(judge_id, category_id, contestant_id, scores, actor=None):
    judge = get_or_raise(Judge, judge_id, 'Judge')
    category = get_or_raise(Category, category_id, 'Category')
    contestant = get_or_raise(Contestant, contestant_id, 'Contestant')

    if locks.is_locked(judge.id, category.id, contestant.id):
        raise LockedError(judge_id=judge.id, category_id=category.id, contestant_id=contestant.id)

    criteria = get_category_criteria(category.id)
    values = validate_batch(criteria, scores)

    actor = actor or activity.judge_actor(judge)
    try:
        staged, resubmission = stage_scores(judge, category, contestant, criteria, values, actor.get('id'))
        lock = locks.add_lock(judge.id, category.id, contestant.id, actor)
    except (AlreadyLockedError, IntegrityError):
        # A concurrent submission for the same key got there first
        db.session.rollback()
        raise LockedError(judge_id=judge.id, category_id=category.id, contestant_id=contestant.id)
    db.session.commit()

    total_score = sum(score.weighted_score for score in staged)
    action_type = 'score_updated' if resubmission else 'score_submitted'
    logger.info(
        '%s judge=%s category=%s contestant=%s total=%.3f',
        action_type, judge.id, category.id, contestant.id, total_score
    )

    key = {'judge_id': judge.id, 'category_id': category.id, 'contestant_id': contestant.id}
    publish_change('scores', action_type, dict(key, total_score=round(total_score, 2)))
    publish_change('locks', 'created', lock.to_dict())

    verb = 'updated' if resubmission else 'submitted'
    activity.record(
        actor,
        action_type,
        f'{judge.name} {verb} {category.label} scores for #{contestant.number} {contestant.name}',
        entity_type='submission',
        entity_id=lock.id,
        metadata={
            'judge_id': judge.id,
            'judge_name': judge.name,
            'contestant_id': contestant.id,
            'contestant_name': contestant.name,
            'contestant_number': contestant.number,
            'division': contestant.division,
            'category_id': category.id,
            'category_label': category.label,
            'total_score': round(total_score, 2)
        }
    )

    return {
        'action_type': action_type,
        'lock': lock.to_dict(),
        'total_score': round(total_score, 2),
        'scores': [
            {
                'criteria_id': score.criteria_id,
                'raw_score': score.raw_score,
                'weighted_score': score.weighted_score
            }
            for score in staged
        ]
    }


def scores_for(judge_id, category_id, contestant_id=None):
    query = Score.query.filter_by(judge_id=judge_id, category_id=category_id)
    if contestant_id is not None:
        query = query.filter_by(contestant_id=contestant_id)
    return query.all()
