import os

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ.setdefault('LOG_LEVEL', 'WARNING')

import pytest

import activity
from app import app as flask_app
from models import Category, Contestant, Criteria, Judge, db
from realtime import change_feed

JUDGE_PASSWORD = 'judge-secret'


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, RANK_METHOD='standard')
    with flask_app.app_context():
        db.create_all()
        change_feed.reset()
        activity.discard_pending()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_category(slug, label, criteria, weight=1.0, order=1):
    category = Category(slug=slug, label=label, weight=weight, order=order)
    for index, (max_score, criterion_weight) in enumerate(criteria, 1):
        category.criteria.append(Criteria(
            slug=f'{slug}-c{index}',
            label=f'{label} criterion {index}',
            max_score=max_score,
            weight=criterion_weight,
            order=index
        ))
    db.session.add(category)
    db.session.commit()
    return category


def make_judge(number, name, division='male', username=None):
    judge = Judge(number=number, name=name, division=division, username=username or f'judge{number}')
    judge.set_password(JUDGE_PASSWORD)
    db.session.add(judge)
    db.session.commit()
    return judge


def make_contestant(number, name=None, division='male'):
    contestant = Contestant(number=number, name=name or f'School {number}', division=division)
    db.session.add(contestant)
    db.session.commit()
    return contestant


def batch(category, values):
    return [
        {'criteria_id': criterion.id, 'raw_score': value}
        for criterion, value in zip(category.criteria, values)
    ]


@pytest.fixture
def category(app):
    return make_category('runway', 'Runway', [(10, 0.5), (10, 0.3), (10, 0.2)])


@pytest.fixture
def judges(app):
    return [
        make_judge(1, 'Judge One'),
        make_judge(2, 'Judge Two'),
        make_judge(3, 'Judge Three'),
    ]


@pytest.fixture
def contestants(app):
    return [
        make_contestant(1),
        make_contestant(2),
        make_contestant(3),
        make_contestant(4),
    ]
