from flask import Flask, request, jsonify, session, make_response
from flask_socketio import join_room
from datetime import datetime, timedelta
from functools import wraps
import csv
import logging
import os
from io import StringIO
from sqlalchemy import func

import activity
import aggregation
import locks
import scoring
from errors import NotFoundError, PermissionDenied, ScoringError, ValidationError
from models import (
    db, User, Category, Criteria, Contestant, Judge, Score, ScoreHistory, SubmissionLock,
    DIVISION_VALUES, DIVISION_LABELS, normalize_division
)
from realtime import STREAMS, change_feed, emit_realtime_update, publish_change, socketio


def configure_logging():
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())


configure_logging()
logger = logging.getLogger('pageant')


def build_database_uri():
    database_url = os.getenv('DATABASE_URL')
    if database_url:
        return database_url

    db_user = os.getenv('DB_USER')
    db_pass = os.getenv('DB_PASS')
    db_name = os.getenv('DB_NAME')
    instance = os.getenv('INSTANCE_CONNECTION_NAME')
    if all([db_user, db_pass, db_name, instance]):
        return (
            f"postgresql+psycopg2://{db_user}:{db_pass}@/{db_name}"
            f"?host=/cloudsql/{instance}"
        )

    return 'sqlite:///pageant.db'


app = Flask(__name__)
app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'your-secret-key-change-this')
app.config['SQLALCHEMY_DATABASE_URI'] = build_database_uri()
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['MAX_JUDGES_PER_DIVISION'] = int(os.getenv('MAX_JUDGES_PER_DIVISION', '5'))
app.config['MAX_CONTESTANTS_PER_DIVISION'] = int(os.getenv('MAX_CONTESTANTS_PER_DIVISION', '5'))
app.config['RANK_METHOD'] = os.getenv('RANK_METHOD', 'standard')
app.config['ACTIVITY_FEED_LIMIT'] = int(os.getenv('ACTIVITY_FEED_LIMIT', '50'))
app.config['CHANGE_FEED_SIZE'] = int(os.getenv('CHANGE_FEED_SIZE', '500'))
app.config['PORTAL_ACTIVE_MINUTES'] = int(os.getenv('PORTAL_ACTIVE_MINUTES', '5'))

db.init_app(app)
socketio.init_app(app, async_mode='threading')
change_feed.reset(maxlen=app.config['CHANGE_FEED_SIZE'])

# Default admin credentials (override with environment variables)
DEFAULT_ADMIN_USERNAME = os.getenv('ADMIN_USERNAME', 'admin')
DEFAULT_ADMIN_PASSWORD = os.getenv('ADMIN_PASSWORD', 'adminITD2026')


def json_error(message, status=400, **extra):
    payload = {'success': False, 'message': message}
    payload.update(extra)
    return jsonify(payload), status


# Authentication decorators
def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('logged_in') and not session.get('judge_logged_in'):
            return json_error('Please login to access this page.', 401)
        return f(*args, **kwargs)
    return decorated_function

def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('logged_in'):
            return json_error('Please login to access this page.', 401)
        if session.get('role') != 'admin':
            return json_error('Admin access required.', 403)
        return f(*args, **kwargs)
    return decorated_function

def judge_login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('judge_logged_in'):
            return json_error('Please login as judge to access this page.', 401)
        return f(*args, **kwargs)
    return decorated_function


@app.errorhandler(ScoringError)
def handle_scoring_error(error):
    return jsonify(error.to_dict()), error.status_code


# Ensure there is at least one admin user
def ensure_default_admin():
    if User.query.first() is None:
        admin_user = User(username=DEFAULT_ADMIN_USERNAME)
        admin_user.set_password(DEFAULT_ADMIN_PASSWORD)
        admin_user.role = 'admin'
        db.session.add(admin_user)
        db.session.commit()

def get_current_user():
    user_id = session.get('user_id')
    if not user_id:
        return None
    return db.session.get(User, user_id)

def get_current_judge():
    judge_id = session.get('judge_id')
    if not judge_id:
        return None
    return db.session.get(Judge, judge_id)

def current_user():
    """The acting identity as seen by the engine: id, role, name, division."""
    if session.get('logged_in'):
        user = get_current_user()
        if user:
            return {'id': user.id, 'role': 'admin', 'name': user.username, 'division': None}
    if session.get('judge_logged_in'):
        judge = get_current_judge()
        if judge:
            return {'id': judge.id, 'role': 'judge', 'name': judge.name, 'division': judge.division}
    return None

def current_admin_actor():
    user = get_current_user()
    if not user:
        raise PermissionDenied()
    return activity.admin_actor(user)

def get_payload():
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    return data or {}

def parse_int(value, label):
    if value is None or value == '':
        raise ValidationError(f'{label} is required.')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{label} must be a whole number.')

def parse_date(value, end_of_day=False):
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, '%Y-%m-%d')
        if end_of_day:
            return parsed.replace(hour=23, minute=59, second=59)
        return parsed
    except ValueError:
        return None

def parse_timestamp(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError('since must be an ISO timestamp.')

def serialize_contestant(contestant):
    return {
        'id': contestant.id,
        'number': contestant.number,
        'name': contestant.name,
        'division': contestant.division,
        'division_label': DIVISION_LABELS.get(contestant.division, contestant.division)
    }

def serialize_judge(judge):
    return {
        'id': judge.id,
        'number': judge.number,
        'name': judge.name,
        'username': judge.username,
        'division': judge.division,
        'is_active': bool(judge.is_active),
        'is_logged_in': bool(judge.is_logged_in),
        'last_login_at': judge.last_login_at.isoformat() if judge.last_login_at else None,
        'last_portal_at': judge.last_portal_at.isoformat() if judge.last_portal_at else None
    }

def serialize_category(category):
    return {
        'id': category.id,
        'slug': category.slug,
        'label': category.label,
        'weight': category.weight,
        'order': category.order,
        'is_active': bool(category.is_active),
        'criteria': [
            {
                'id': criterion.id,
                'slug': criterion.slug,
                'label': criterion.label,
                'max_score': criterion.max_score,
                'weight': criterion.weight,
                'order': criterion.order
            }
            for criterion in category.criteria
        ]
    }

def get_active_categories():
    return Category.query.filter_by(is_active=True).order_by(Category.order, Category.id).all()


# Routes
@app.route('/login', methods=['POST'])
def login():
    data = get_payload()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    ensure_default_admin()
    user = User.query.filter_by(username=username).first()
    if user and user.is_active and user.check_password(password):
        session.clear()
        session['logged_in'] = True
        session['username'] = user.username
        session['user_id'] = user.id
        session['role'] = user.role or 'admin'
        logger.info('Admin login username=%s', user.username)
        return jsonify({'success': True, 'role': 'admin', 'user': current_user()})

    judge = Judge.query.filter_by(username=username).first()
    if judge and judge.is_active and judge.check_password(password):
        session.clear()
        session['judge_logged_in'] = True
        session['judge_id'] = judge.id
        session['judge_username'] = judge.username
        judge.is_logged_in = True
        judge.last_login_at = datetime.utcnow()
        db.session.commit()
        emit_realtime_update('portal_update', {'judge_id': judge.id, 'logged_in': True})
        activity.record(
            activity.judge_actor(judge),
            'judge_logged_in',
            f'{judge.name} logged in',
            entity_type='judge',
            entity_id=judge.id,
            metadata={'division': judge.division}
        )
        return jsonify({'success': True, 'role': 'judge', 'user': current_user()})

    logger.warning('Failed login username=%s', username)
    return json_error('Invalid username or password.', 401)

@app.route('/logout', methods=['POST'])
def logout():
    judge = get_current_judge() if session.get('judge_logged_in') else None
    if judge:
        judge.is_logged_in = False
        db.session.commit()
        emit_realtime_update('portal_update', {'judge_id': judge.id, 'logged_in': False})
        activity.record(
            activity.judge_actor(judge),
            'judge_logged_out',
            f'{judge.name} logged out',
            entity_type='judge',
            entity_id=judge.id,
            metadata={'division': judge.division}
        )
    session.clear()
    return jsonify({'success': True, 'message': 'You have been logged out.'})

@app.route('/me')
@login_required
def me():
    return jsonify({'success': True, 'user': current_user()})

@app.route('/judge/portal')
@judge_login_required
def judge_portal():
    judge = get_current_judge()
    if not judge:
        raise NotFoundError('Judge not found.')
    judge.last_portal_at = datetime.utcnow()
    db.session.commit()

    categories = get_active_categories()
    category_id = request.args.get('category_id', type=int)
    category = next((c for c in categories if c.id == category_id), None) if category_id else None
    if category is None and categories:
        category = categories[0]

    contestants = aggregation.get_division_contestants(judge.division)
    locked_ids = set()
    score_matrix = {}
    if category:
        locked_ids = {lock.contestant_id for lock in locks.locks_for(judge_id=judge.id, category_id=category.id)}
        for row in scoring.scores_for(judge.id, category.id):
            score_matrix.setdefault(row.contestant_id, {})[row.criteria_id] = row.raw_score

    return jsonify({
        'success': True,
        'judge': serialize_judge(judge),
        'categories': [serialize_category(c) for c in categories],
        'category': serialize_category(category) if category else None,
        'contestants': [
            dict(serialize_contestant(contestant),
                 locked=contestant.id in locked_ids,
                 scores=score_matrix.get(contestant.id, {}))
            for contestant in contestants
        ],
        'all_submitted': bool(contestants) and all(c.id in locked_ids for c in contestants)
    })

@app.route('/judge/submit', methods=['POST'])
@judge_login_required
def judge_submit():
    data = get_payload()
    judge = get_current_judge()
    if not judge or not judge.is_active:
        raise PermissionDenied('Judge account is not active.')

    requested_judge = data.get('judge_id')
    if requested_judge is not None and parse_int(requested_judge, 'Judge') != judge.id:
        raise PermissionDenied('You can only submit your own scores.')

    category_id = parse_int(data.get('category_id'), 'Category')
    contestant_id = parse_int(data.get('contestant_id'), 'Contestant')
    contestant = db.session.get(Contestant, contestant_id)
    if not contestant:
        raise NotFoundError('Contestant not found.', contestant_id=contestant_id)
    if contestant.division != judge.division:
        raise PermissionDenied('Contestant is not in your division.')

    result = scoring.submit_category(
        judge.id,
        category_id,
        contestant_id,
        data.get('scores'),
        actor=activity.judge_actor(judge)
    )
    message = 'Scores updated.' if result['action_type'] == 'score_updated' else 'Scores submitted.'
    return jsonify(dict(result, success=True, message=message))

@app.route('/judge/locks')
@judge_login_required
def judge_locks():
    judge = get_current_judge()
    if not judge:
        raise NotFoundError('Judge not found.')
    category_id = parse_int(request.args.get('category_id'), 'Category')
    rows = locks.locks_for(judge_id=judge.id, category_id=category_id)
    return jsonify({'success': True, 'locks': [lock.to_dict() for lock in rows]})

@app.route('/admin/locks')
@admin_required
def admin_locks():
    category_id = request.args.get('category_id', type=int)
    division = request.args.get('division')
    rows = locks.locks_for(category_id=category_id)
    if division:
        division = aggregation.require_division(division)
        contestant_ids = {c.id for c in aggregation.get_division_contestants(division)}
        rows = [lock for lock in rows if lock.contestant_id in contestant_ids]
    return jsonify({'success': True, 'locks': [lock.to_dict() for lock in rows]})

@app.route('/admin/locks/remove', methods=['POST'])
@admin_required
def admin_remove_lock():
    data = get_payload()
    removed = locks.remove_lock(
        parse_int(data.get('judge_id'), 'Judge'),
        parse_int(data.get('category_id'), 'Category'),
        parse_int(data.get('contestant_id'), 'Contestant'),
        actor=current_admin_actor()
    )
    return jsonify({'success': True, 'message': 'Submission unlocked.', 'lock': removed})

@app.route('/admin/summary/<int:category_id>/<division>')
@admin_required
def admin_summary(category_id, division):
    summary = aggregation.summarize(category_id, division)
    return jsonify(dict(summary, success=True, seq=change_feed.latest('scores')))

@app.route('/admin/leaderboard/<division>')
@admin_required
def admin_leaderboard(division):
    board = aggregation.leaderboard(division)
    return jsonify(dict(board, success=True, seq=change_feed.latest('scores')))

@app.route('/admin/progress/<int:category_id>')
@admin_required
def admin_progress(category_id):
    return jsonify(dict(aggregation.progress(category_id, request.args.get('division')), success=True))

@app.route('/admin/activity')
@admin_required
def admin_activity():
    params = request.args.to_dict()
    limit = request.args.get('limit', type=int) or app.config['ACTIVITY_FEED_LIMIT']
    entries = activity.list_recent(
        limit=limit,
        since=parse_timestamp(params.get('since')),
        action_type=params.get('action'),
        actor_name=params.get('actor'),
        search=params.get('q')
    )
    return jsonify({
        'success': True,
        'activities': [activity.serialize_entry(entry) for entry in entries],
        'seq': change_feed.latest('activity'),
        'action_types': activity.ACTION_TYPES
    })

@app.route('/admin/activity/clear', methods=['POST'])
@admin_required
def admin_activity_clear():
    count = activity.clear_all(actor=current_admin_actor())
    return jsonify({'success': True, 'message': 'Activity feed cleared.', 'count': count})

@app.route('/admin/activity.csv')
@admin_required
def admin_activity_csv():
    params = request.args.to_dict()
    entries = activity.build_activity_query(
        action_type=params.get('action'),
        actor_name=params.get('actor'),
        search=params.get('q'),
        since=parse_date(params.get('start_date')),
        until=parse_date(params.get('end_date'), end_of_day=True)
    ).all()

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(['Time', 'Actor', 'Actor Type', 'Action', 'Description'])
    for entry in entries:
        writer.writerow([
            entry.created_at.strftime('%Y-%m-%d %H:%M:%S'),
            entry.actor_name,
            entry.actor_type,
            entry.action_type,
            entry.description
        ])

    response = make_response(output.getvalue())
    response.headers['Content-Type'] = 'text/csv'
    response.headers['Content-Disposition'] = 'attachment; filename=activity_log.csv'
    return response

@app.route('/admin/scores.csv')
@admin_required
def admin_scores_csv():
    rows = db.session.query(Score, Judge, Contestant, Category, Criteria) \
        .join(Judge, Score.judge_id == Judge.id) \
        .join(Contestant, Score.contestant_id == Contestant.id) \
        .join(Category, Score.category_id == Category.id) \
        .join(Criteria, Score.criteria_id == Criteria.id) \
        .order_by(Contestant.division, Category.order, Contestant.number, Judge.number, Criteria.order) \
        .all()

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(['Division', 'Category', 'Contestant #', 'Contestant', 'Judge', 'Criterion',
                     'Raw Score', 'Weighted Score', 'Updated'])
    for score, judge, contestant, category, criterion in rows:
        writer.writerow([
            contestant.division,
            category.label,
            contestant.number,
            contestant.name,
            judge.name,
            criterion.label,
            score.raw_score,
            round(score.weighted_score, 3),
            (score.updated_at or score.created_at).strftime('%Y-%m-%d %H:%M:%S')
        ])

    response = make_response(output.getvalue())
    response.headers['Content-Type'] = 'text/csv'
    response.headers['Content-Disposition'] = 'attachment; filename=scores.csv'
    return response

@app.route('/admin/score-history')
@admin_required
def admin_score_history():
    query = ScoreHistory.query
    for field in ('judge_id', 'contestant_id', 'category_id'):
        value = request.args.get(field, type=int)
        if value is not None:
            query = query.filter(getattr(ScoreHistory, field) == value)
    limit = request.args.get('limit', type=int) or 200
    rows = query.order_by(ScoreHistory.created_at.desc(), ScoreHistory.id.desc()).limit(limit).all()
    return jsonify({'success': True, 'history': [row.to_dict() for row in rows]})

@app.route('/admin/live-monitoring')
@admin_required
def live_monitoring():
    active_judges = Judge.query.filter_by(is_active=True).order_by(Judge.number.asc()).all()
    categories_data = [aggregation.progress(category.id) for category in get_active_categories()]

    now = datetime.utcnow()
    portal_active_window = timedelta(minutes=app.config['PORTAL_ACTIVE_MINUTES'])
    judges_data = []
    for judge in active_judges:
        in_portal = False
        if judge.is_logged_in and judge.last_portal_at:
            in_portal = (now - judge.last_portal_at) <= portal_active_window
        judges_data.append(dict(serialize_judge(judge), in_portal=in_portal))

    return jsonify({
        'success': True,
        'categories': categories_data,
        'judges': judges_data,
        'total_judges': len(active_judges),
        'portal_window_minutes': app.config['PORTAL_ACTIVE_MINUTES']
    })

@app.route('/admin/contestants', methods=['GET', 'POST'])
@admin_required
def admin_contestants():
    if request.method == 'GET':
        rows = Contestant.query.order_by(Contestant.division, Contestant.number).all()
        return jsonify({'success': True, 'contestants': [serialize_contestant(c) for c in rows]})

    data = get_payload()
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Contestant name is required.')
    if data.get('number') in (None, ''):
        number = (db.session.query(func.max(Contestant.number)).scalar() or 0) + 1
    else:
        number = parse_int(data.get('number'), 'Number')
    if number < 1:
        raise ValidationError('Number must be at least 1.')

    # Contestants always come in a male/female pair sharing the same number
    limit = app.config['MAX_CONTESTANTS_PER_DIVISION']
    for division in DIVISION_VALUES:
        if Contestant.query.filter_by(number=number, division=division).first():
            return json_error(f'Contestant number {number} is already assigned.', 400)
        if Contestant.query.filter_by(division=division).count() >= limit:
            return json_error(f'Maximum of {limit} contestants per division reached.', 400)

    pair = [Contestant(number=number, name=name, division=division) for division in DIVISION_VALUES]
    db.session.add_all(pair)
    db.session.commit()

    activity.record(
        current_admin_actor(),
        'contestant_created',
        f'Registered #{number} {name}',
        entity_type='contestant',
        entity_id=pair[0].id,
        metadata={'number': number, 'name': name, 'contestant_ids': [c.id for c in pair]}
    )
    return jsonify({
        'success': True,
        'message': f'Contestant #{number} - {name} added successfully!',
        'contestants': [serialize_contestant(c) for c in pair]
    }), 201

@app.route('/admin/judges', methods=['GET', 'POST'])
@admin_required
def admin_judges():
    if request.method == 'GET':
        rows = Judge.query.order_by(Judge.division, Judge.number).all()
        return jsonify({'success': True, 'judges': [serialize_judge(j) for j in rows]})

    data = get_payload()
    name = (data.get('name') or '').strip()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    division = normalize_division(data.get('division'))

    if not name:
        raise ValidationError('Judge name is required.')
    if not username or not password:
        raise ValidationError('Username and password are required for judge login.')
    if division is None:
        raise ValidationError('Division must be male or female.')
    if data.get('number') in (None, ''):
        number = (db.session.query(func.max(Judge.number)).scalar() or 0) + 1
    else:
        number = parse_int(data.get('number'), 'Number')

    if Judge.query.filter_by(number=number).first():
        return json_error(f'Judge number {number} already exists!', 400)
    if Judge.query.filter_by(username=username).first():
        return json_error('Judge username already exists!', 400)
    limit = app.config['MAX_JUDGES_PER_DIVISION']
    if Judge.query.filter_by(division=division).count() >= limit:
        return json_error(f'Maximum of {limit} judges in the {DIVISION_LABELS[division]} division reached.', 400)

    judge = Judge(number=number, name=name, username=username, division=division)
    judge.set_password(password)
    db.session.add(judge)
    db.session.commit()

    activity.record(
        current_admin_actor(),
        'judge_created',
        f'Added judge #{number} {name} ({DIVISION_LABELS[division]})',
        entity_type='judge',
        entity_id=judge.id,
        metadata={'number': number, 'name': name, 'division': division}
    )
    return jsonify({
        'success': True,
        'message': f'Judge #{number} - {name} added successfully!',
        'judge': serialize_judge(judge)
    }), 201

@app.route('/admin/judges/<int:judge_id>/edit', methods=['POST'])
@admin_required
def edit_judge(judge_id):
    judge = db.session.get(Judge, judge_id)
    if not judge:
        raise NotFoundError('Judge not found.', judge_id=judge_id)
    data = get_payload()

    new_name = (data.get('name') or judge.name).strip()
    new_username = (data.get('username') or judge.username or '').strip()
    new_password = data.get('password') or ''
    new_division = normalize_division(data.get('division')) if data.get('division') else judge.division
    if new_division is None:
        raise ValidationError('Division must be male or female.')

    if new_username != judge.username and Judge.query.filter_by(username=new_username).first():
        return json_error('Judge username is already taken!', 400)
    if new_division != judge.division:
        if Score.query.filter_by(judge_id=judge.id).count():
            return json_error('Cannot move a judge who already has scores to another division.', 400)
        limit = app.config['MAX_JUDGES_PER_DIVISION']
        if Judge.query.filter_by(division=new_division).count() >= limit:
            return json_error(f'Maximum of {limit} judges in the {DIVISION_LABELS[new_division]} division reached.', 400)

    judge.name = new_name
    judge.username = new_username
    judge.division = new_division
    if 'is_active' in data:
        judge.is_active = str(data.get('is_active')).lower() in ('1', 'true', 'yes', 'on')
    if new_password:
        judge.set_password(new_password)
    db.session.commit()
    return jsonify({'success': True, 'message': f'Judge #{judge.number} - {judge.name} updated successfully!',
                    'judge': serialize_judge(judge)})

@app.route('/admin/judges/<int:judge_id>/delete', methods=['POST'])
@admin_required
def delete_judge(judge_id):
    judge = db.session.get(Judge, judge_id)
    if not judge:
        raise NotFoundError('Judge not found.', judge_id=judge_id)

    score_count = Score.query.filter_by(judge_id=judge_id).count()
    judge_info = f"#{judge.number} - {judge.name}"
    Score.query.filter_by(judge_id=judge_id).delete()
    SubmissionLock.query.filter_by(judge_id=judge_id).delete()
    db.session.delete(judge)
    db.session.commit()

    if score_count:
        publish_change('scores', 'judge_deleted', {'judge_id': judge_id})
        publish_change('locks', 'judge_deleted', {'judge_id': judge_id})
    logger.info('Deleted judge %s with %s scores', judge_info, score_count)
    return jsonify({'success': True, 'message': f'Judge {judge_info} deleted successfully!',
                    'deleted_scores': score_count})

@app.route('/admin/categories', methods=['GET', 'POST'])
@admin_required
def admin_categories():
    if request.method == 'GET':
        rows = Category.query.order_by(Category.order, Category.id).all()
        return jsonify({'success': True, 'categories': [serialize_category(c) for c in rows]})

    data = request.get_json(silent=True) or {}
    slug = (data.get('slug') or '').strip().lower()
    label = (data.get('label') or '').strip()
    criteria_data = data.get('criteria') or []
    if not slug or not label:
        raise ValidationError('Category slug and label are required.')
    if Category.query.filter_by(slug=slug).first():
        return json_error(f'Category "{slug}" already exists!', 400)
    if not criteria_data:
        raise ValidationError('At least one criterion is required.')

    try:
        weight = float(data.get('weight', 1))
    except (TypeError, ValueError):
        raise ValidationError('Category weight must be a number.')
    if weight <= 0:
        raise ValidationError('Category weight must be positive.')

    category = Category(slug=slug, label=label, weight=weight,
                        order=data.get('order') or (db.session.query(func.max(Category.order)).scalar() or 0) + 1)
    seen = set()
    for index, item in enumerate(criteria_data, 1):
        criterion_slug = (item.get('slug') or '').strip().lower()
        criterion_label = (item.get('label') or '').strip()
        if not criterion_slug or not criterion_label or criterion_slug in seen:
            raise ValidationError(f'Criterion {index} needs a unique slug and a label.')
        try:
            max_score = float(item.get('max_score', 10))
            criterion_weight = float(item['weight'])
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f'Criterion "{criterion_label}" needs numeric max_score and weight.')
        if max_score <= 0 or criterion_weight <= 0:
            raise ValidationError(f'Criterion "{criterion_label}" max_score and weight must be positive.')
        seen.add(criterion_slug)
        category.criteria.append(Criteria(
            slug=criterion_slug,
            label=criterion_label,
            max_score=max_score,
            weight=criterion_weight,
            order=item.get('order') or index
        ))

    db.session.add(category)
    db.session.commit()
    return jsonify({'success': True, 'message': f'Category "{label}" added successfully!',
                    'category': serialize_category(category)}), 201

@app.route('/admin/reset', methods=['POST'])
@admin_required
def reset_database():
    """Reset scoring data while keeping admin accounts and categories"""
    actor = current_admin_actor()
    try:
        ScoreHistory.query.delete()
        Score.query.delete()
        SubmissionLock.query.delete()
        Contestant.query.delete()
        Judge.query.delete()
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception('System reset failed')
        raise

    publish_change('scores', 'reset')
    publish_change('locks', 'reset')
    activity.record(
        actor,
        'system_reset',
        'Contestants, judges, scores and locks were cleared',
        entity_type='system'
    )
    return jsonify({'success': True, 'message': 'Database reset successfully!'})

@app.route('/api/changes/<stream>')
@login_required
def api_changes(stream):
    if stream not in STREAMS:
        raise NotFoundError(f'Unknown change stream: {stream}')
    since = request.args.get('since', default=0, type=int)
    events, complete = change_feed.replay(stream, since)
    return jsonify({
        'success': True,
        'stream': stream,
        'events': events,
        'complete': complete,
        'latest': change_feed.latest(stream)
    })


@socketio.on('subscribe')
def handle_subscribe(data=None):
    if current_user() is None:
        return {'success': False, 'message': 'Please login first.'}
    requested = (data or {}).get('streams') or list(STREAMS)
    joined = []
    for stream in requested:
        if stream in STREAMS:
            join_room(stream)
            joined.append(stream)
    return {'success': True, 'streams': joined, 'latest': {s: change_feed.latest(s) for s in joined}}

@socketio.on('portal_ping')
def handle_portal_ping(data=None):
    judge_id = session.get('judge_id')
    if not judge_id:
        return
    judge = db.session.get(Judge, judge_id)
    if not judge:
        return
    judge.is_logged_in = True
    judge.last_portal_at = datetime.utcnow()
    db.session.commit()
    emit_realtime_update('portal_update', {'judge_id': judge.id, 'active': True})


def init_db():
    db.create_all()
    ensure_default_admin()


if __name__ == '__main__':
    with app.app_context():
        init_db()
    socketio.run(app, debug=True)
