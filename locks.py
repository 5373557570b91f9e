import logging

from sqlalchemy.exc import IntegrityError

import activity
from errors import AlreadyLockedError, NotFoundError, PermissionDenied
from models import Category, Contestant, Judge, SubmissionLock, db
from realtime import publish_change

logger = logging.getLogger(__name__)


def find_lock(judge_id, category_id, contestant_id):
    return SubmissionLock.query.filter_by(
        judge_id=judge_id,
        category_id=category_id,
        contestant_id=contestant_id
    ).first()


def is_locked(judge_id, category_id, contestant_id):
    return find_lock(judge_id, category_id, contestant_id) is not None


def locks_for(judge_id=None, category_id=None, contestant_id=None):
    query = SubmissionLock.query
    if judge_id is not None:
        query = query.filter_by(judge_id=judge_id)
    if category_id is not None:
        query = query.filter_by(category_id=category_id)
    if contestant_id is not None:
        query = query.filter_by(contestant_id=contestant_id)
    return query.order_by(SubmissionLock.locked_at, SubmissionLock.id).all()


def add_lock(judge_id, category_id, contestant_id, actor=None):
    """Stage the lock row inside the caller's transaction.

    The unique constraint on (judge, category, contestant) makes the flush a
    conditional insert: if another request already holds the key the flush
    fails and the whole transaction, including anything the caller staged
    before it, is rolled back.
    """
    lock = SubmissionLock(
        judge_id=judge_id,
        category_id=category_id,
        contestant_id=contestant_id,
        locked_by=(actor or {}).get('id', judge_id)
    )
    db.session.add(lock)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise AlreadyLockedError(
            judge_id=judge_id,
            category_id=category_id,
            contestant_id=contestant_id
        )
    return lock


def create_lock(judge_id, category_id, contestant_id, actor=None):
    lock = add_lock(judge_id, category_id, contestant_id, actor)
    db.session.commit()
    publish_change('locks', 'created', lock.to_dict())
    if actor:
        activity.record(
            actor,
            'lock_created',
            f'Locked judge {judge_id} for contestant {contestant_id} in category {category_id}',
            entity_type='lock',
            entity_id=lock.id,
            metadata={'judge_id': judge_id, 'category_id': category_id, 'contestant_id': contestant_id}
        )
    return lock


def remove_lock(judge_id, category_id, contestant_id, actor=None):
    if not actor or actor.get('type') != 'admin':
        raise PermissionDenied('Only an admin can unlock a submission.')

    lock = find_lock(judge_id, category_id, contestant_id)
    if lock is None:
        raise NotFoundError(
            'No lock exists for this judge, category and contestant.',
            judge_id=judge_id,
            category_id=category_id,
            contestant_id=contestant_id
        )

    removed = lock.to_dict()
    deleted = SubmissionLock.query.filter_by(id=lock.id).delete()
    db.session.commit()
    if not deleted:
        # Another admin removed it between the lookup and the delete
        raise NotFoundError(
            'Lock was already removed.',
            judge_id=judge_id,
            category_id=category_id,
            contestant_id=contestant_id
        )

    logger.info('Lock removed judge=%s category=%s contestant=%s', judge_id, category_id, contestant_id)
    publish_change('locks', 'removed', removed)

    judge = db.session.get(Judge, judge_id)
    category = db.session.get(Category, category_id)
    contestant = db.session.get(Contestant, contestant_id)
    judge_name = judge.name if judge else f'Judge {judge_id}'
    contestant_name = contestant.name if contestant else f'Contestant {contestant_id}'
    category_label = category.label if category else f'Category {category_id}'
    activity.record(
        actor,
        'lock_removed',
        f'Unlocked {judge_name} for {contestant_name} in {category_label}',
        entity_type='lock',
        entity_id=removed['id'],
        metadata={
            'judge_id': judge_id,
            'judge_name': judge_name,
            'contestant_id': contestant_id,
            'contestant_name': contestant_name,
            'contestant_number': contestant.number if contestant else None,
            'division': contestant.division if contestant else None,
            'category_id': category_id,
            'category_label': category_label
        }
    )
    return removed
