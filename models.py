from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

db = SQLAlchemy()

DIVISION_VALUES = ['male', 'female']
DIVISION_LABELS = {
    'male': 'Male',
    'female': 'Female'
}


def normalize_division(value):
    value = (value or '').strip().lower()
    if value in DIVISION_VALUES:
        return value
    return None


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    role = db.Column(db.String(20), nullable=False, default='admin')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)


class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(80), unique=True, nullable=False)
    label = db.Column(db.String(120), nullable=False)
    weight = db.Column(db.Float, nullable=False, default=1.0)
    is_active = db.Column(db.Boolean, default=True)
    order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    criteria = db.relationship('Criteria', backref='category', lazy=True, cascade='all, delete-orphan',
                               order_by='Criteria.order')


class Criteria(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=False)
    slug = db.Column(db.String(80), nullable=False)
    label = db.Column(db.String(120), nullable=False)
    max_score = db.Column(db.Float, nullable=False, default=10.0)
    weight = db.Column(db.Float, nullable=False)
    order = db.Column(db.Integer, default=0)

    __table_args__ = (db.UniqueConstraint('category_id', 'slug', name='uq_criteria_category_slug'),)


class Contestant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    division = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('division', 'number', name='uq_contestant_division_number'),)


class Judge(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.Integer, unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    username = db.Column(db.String(80), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    division = db.Column(db.String(20), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    is_logged_in = db.Column(db.Boolean, default=False)
    last_login_at = db.Column(db.DateTime, nullable=True)
    last_portal_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)


class Score(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    judge_id = db.Column(db.Integer, db.ForeignKey('judge.id'), nullable=False)
    contestant_id = db.Column(db.Integer, db.ForeignKey('contestant.id'), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=False)
    criteria_id = db.Column(db.Integer, db.ForeignKey('criteria.id'), nullable=False)
    raw_score = db.Column(db.Float, nullable=False)
    weighted_score = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('judge_id', 'contestant_id', 'category_id', 'criteria_id', name='uq_score_key'),
    )


class SubmissionLock(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    judge_id = db.Column(db.Integer, db.ForeignKey('judge.id'), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=False)
    contestant_id = db.Column(db.Integer, db.ForeignKey('contestant.id'), nullable=False)
    locked_by = db.Column(db.Integer, nullable=True)
    locked_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('judge_id', 'category_id', 'contestant_id', name='uq_submission_lock'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'judge_id': self.judge_id,
            'category_id': self.category_id,
            'contestant_id': self.contestant_id,
            'locked_by': self.locked_by,
            'locked_at': self.locked_at.isoformat() if self.locked_at else None
        }


class ScoreHistory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    score_id = db.Column(db.Integer, nullable=True)
    judge_id = db.Column(db.Integer, nullable=False)
    contestant_id = db.Column(db.Integer, nullable=False)
    category_id = db.Column(db.Integer, nullable=False)
    criteria_id = db.Column(db.Integer, nullable=False)
    old_raw_score = db.Column(db.Float, nullable=True)
    new_raw_score = db.Column(db.Float, nullable=True)
    old_weighted_score = db.Column(db.Float, nullable=True)
    new_weighted_score = db.Column(db.Float, nullable=True)
    changed_by = db.Column(db.Integer, nullable=True)
    change_type = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'score_id': self.score_id,
            'judge_id': self.judge_id,
            'contestant_id': self.contestant_id,
            'category_id': self.category_id,
            'criteria_id': self.criteria_id,
            'old_raw_score': self.old_raw_score,
            'new_raw_score': self.new_raw_score,
            'old_weighted_score': self.old_weighted_score,
            'new_weighted_score': self.new_weighted_score,
            'changed_by': self.changed_by,
            'change_type': self.change_type,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class ActivityLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=True)
    actor_type = db.Column(db.String(10), nullable=False)
    actor_name = db.Column(db.String(100), nullable=False)
    action_type = db.Column(db.String(40), nullable=False, index=True)
    entity_type = db.Column(db.String(40), nullable=True)
    entity_id = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=False)
    # "metadata" is reserved on declarative models
    meta = db.Column('metadata', db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
