import logging
import threading
from collections import deque
from datetime import datetime

from sqlalchemy import or_

from errors import ValidationError
from models import ActivityLog, db
from realtime import publish_change

logger = logging.getLogger(__name__)

ACTION_TYPES = {
    'score_submitted': {'label': 'Score Submitted', 'icon': 'save', 'tone': 'blue'},
    'score_updated': {'label': 'Score Updated', 'icon': 'save', 'tone': 'blue'},
    'lock_created': {'label': 'Lock Created', 'icon': 'lock', 'tone': 'amber'},
    'lock_removed': {'label': 'Lock Removed', 'icon': 'unlock', 'tone': 'green'},
    'judge_logged_in': {'label': 'Judge Logged In', 'icon': 'user', 'tone': 'emerald'},
    'judge_logged_out': {'label': 'Judge Logged Out', 'icon': 'user', 'tone': 'slate'},
    'contestant_created': {'label': 'Contestant Created', 'icon': 'user-plus', 'tone': 'purple'},
    'judge_created': {'label': 'Judge Created', 'icon': 'user-plus', 'tone': 'indigo'},
    'system_reset': {'label': 'System Reset', 'icon': 'rotate-ccw', 'tone': 'red'}
}

ACTOR_TYPES = ('judge', 'admin')

MAX_RETRY_ATTEMPTS = 3

_pending = deque()
_pending_lock = threading.Lock()


def judge_actor(judge):
    return {'id': judge.id, 'type': 'judge', 'name': judge.name, 'division': judge.division}


def admin_actor(user):
    return {'id': user.id, 'type': 'admin', 'name': user.username}


def serialize_entry(entry):
    template = ACTION_TYPES.get(entry.action_type, {})
    return {
        'id': entry.id,
        'actor_id': entry.actor_id,
        'actor_type': entry.actor_type,
        'actor_name': entry.actor_name,
        'action_type': entry.action_type,
        'label': template.get('label'),
        'icon': template.get('icon'),
        'tone': template.get('tone'),
        'entity_type': entry.entity_type,
        'entity_id': entry.entity_id,
        'description': entry.description,
        'metadata': entry.meta or {},
        'created_at': entry.created_at.isoformat() if entry.created_at else None
    }


def build_entry(actor, action_type, description, entity_type=None, entity_id=None, metadata=None):
    if action_type not in ACTION_TYPES:
        raise ValidationError(f'Unknown activity type: {action_type}')
    if not description or not str(description).strip():
        raise ValidationError('Activity description is required.')
    actor = actor or {}
    actor_type = actor.get('type')
    if actor_type not in ACTOR_TYPES:
        raise ValidationError(f'Unknown actor type: {actor_type}')
    return {
        'actor_id': actor.get('id'),
        'actor_type': actor_type,
        'actor_name': actor.get('name') or actor_type,
        'action_type': action_type,
        'entity_type': entity_type,
        'entity_id': str(entity_id) if entity_id is not None else None,
        'description': str(description).strip(),
        'metadata': dict(metadata or {})
    }


def _write(fields):
    entry = ActivityLog(
        actor_id=fields['actor_id'],
        actor_type=fields['actor_type'],
        actor_name=fields['actor_name'],
        action_type=fields['action_type'],
        entity_type=fields['entity_type'],
        entity_id=fields['entity_id'],
        description=fields['description'],
        meta=fields['metadata'],
        created_at=fields.get('created_at') or datetime.utcnow()
    )
    db.session.add(entry)
    db.session.commit()
    publish_change('activity', 'appended', serialize_entry(entry))
    return entry


def append(actor, action_type, description, entity_type=None, entity_id=None, metadata=None):
    fields = build_entry(actor, action_type, description, entity_type, entity_id, metadata)
    return _write(fields).id


def _queue(fields, attempts):
    with _pending_lock:
        _pending.append((fields, attempts))


def pending_count():
    with _pending_lock:
        return len(_pending)


def discard_pending():
    with _pending_lock:
        _pending.clear()


def flush_pending():
    with _pending_lock:
        batch = list(_pending)
        _pending.clear()
    written = 0
    for fields, attempts in batch:
        try:
            _write(fields)
            written += 1
        except Exception:
            db.session.rollback()
            attempts += 1
            if attempts >= MAX_RETRY_ATTEMPTS:
                logger.error('Dropping activity entry after %s attempts: %s', attempts, fields)
            else:
                _queue(fields, attempts)
    return written


def record(actor, action_type, description, entity_type=None, entity_id=None, metadata=None):
    """Append an activity entry without ever failing the caller.

    Called after a score or lock mutation has been committed. A failed
    append is logged and queued for retry. Returns the new entry id, or
    None when the entry was queued.
    """
    fields = build_entry(actor, action_type, description, entity_type, entity_id, metadata)
    # Retried entries keep the time of the original event
    fields['created_at'] = datetime.utcnow()
    try:
        entry_id = _write(fields).id
    except Exception:
        db.session.rollback()
        logger.exception('Activity log append failed for %s, queued for retry', action_type)
        _queue(fields, 1)
        return None
    if pending_count():
        flush_pending()
    return entry_id


def build_activity_query(action_type=None, actor_name=None, search=None, since=None, until=None):
    query = ActivityLog.query
    if action_type:
        query = query.filter(ActivityLog.action_type == action_type)
    if actor_name:
        query = query.filter(ActivityLog.actor_name == actor_name)
    if search:
        like_term = f"%{search}%"
        query = query.filter(or_(
            ActivityLog.actor_name.ilike(like_term),
            ActivityLog.action_type.ilike(like_term),
            ActivityLog.description.ilike(like_term)
        ))
    if since:
        query = query.filter(ActivityLog.created_at > since)
    if until:
        query = query.filter(ActivityLog.created_at <= until)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())


def list_recent(limit=50, since=None, **filters):
    query = build_activity_query(since=since, **filters)
    if limit:
        query = query.limit(limit)
    return query.all()


def clear_all(actor=None):
    count = ActivityLog.query.delete()
    db.session.commit()
    discard_pending()
    logger.info('Activity feed cleared by %s (%s entries)', (actor or {}).get('name', 'unknown'), count)
    publish_change('activity', 'cleared', {'count': count})
    return count
