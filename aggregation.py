import math

from flask import current_app, has_app_context

from errors import ValidationError
from models import DIVISION_VALUES, Category, Contestant, Criteria, Judge, Score, SubmissionLock, normalize_division
from scoring import get_or_raise

RANK_METHODS = ('standard', 'dense')


def get_rank_method(method=None):
    if method is None and has_app_context():
        method = current_app.config.get('RANK_METHOD')
    method = (method or 'standard').lower()
    if method not in RANK_METHODS:
        raise ValidationError(f'Unknown rank method: {method}')
    return method


def assign_ranks(values, method='standard'):
    """Rank values that are already sorted best-first.

    Equal values share a rank. With ``standard`` the next distinct value
    takes its 1-based position (90, 90, 85 -> 1, 1, 3); with ``dense`` it
    takes the previous rank + 1 (90, 90, 85 -> 1, 1, 2).
    """
    ranks = []
    previous = None
    rank = 0
    for position, value in enumerate(values, 1):
        if rank == 0 or value != previous:
            rank = position if method == 'standard' else rank + 1
            previous = value
        ranks.append(rank)
    return ranks


def display(value):
    if value is None:
        return None
    return round(value, 2)


def require_division(division):
    normalized = normalize_division(division)
    if normalized is None:
        raise ValidationError(f'Unknown division: {division}')
    return normalized


def get_division_contestants(division):
    return Contestant.query.filter_by(division=division).order_by(Contestant.number, Contestant.id).all()


def get_division_judges(division, active_only=False):
    query = Judge.query.filter_by(division=division)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(Judge.number, Judge.id).all()


def collect_judge_totals(category_id, criteria_ids, judge_ids, contestant_ids):
    totals = {}
    if not criteria_ids or not judge_ids or not contestant_ids:
        return totals
    rows = Score.query.filter(
        Score.category_id == category_id,
        Score.criteria_id.in_(criteria_ids),
        Score.judge_id.in_(judge_ids),
        Score.contestant_id.in_(contestant_ids)
    ).order_by(Score.id).all()
    weighted_by_pair = {}
    for row in rows:
        weighted_by_pair.setdefault((row.contestant_id, row.judge_id), []).append(row.weighted_score)
    for pair, weighted in weighted_by_pair.items():
        totals[pair] = math.fsum(weighted)
    return totals


def rank_rows(rows, key, method, descending=True):
    scored = [row for row in rows if row[key] is not None]
    unscored = [row for row in rows if row[key] is None]
    scored.sort(key=lambda row: (-row[key] if descending else row[key], row['candidate_number']))
    for row, rank in zip(scored, assign_ranks([row[key] for row in scored], method)):
        row['rank'] = rank
    for row in unscored:
        row['rank'] = None
    return scored + unscored


def summarize(category_id, division, rank_method=None):
    category = get_or_raise(Category, category_id, 'Category')
    division = require_division(division)
    method = get_rank_method(rank_method)

    contestants = get_division_contestants(division)
    judges = get_division_judges(division)
    criteria_ids = [row.id for row in Criteria.query.filter_by(category_id=category.id).all()]
    totals = collect_judge_totals(
        category.id,
        criteria_ids,
        [judge.id for judge in judges],
        [contestant.id for contestant in contestants]
    )

    rows = []
    for contestant in contestants:
        present = [(judge, totals[(contestant.id, judge.id)]) for judge in judges
                   if (contestant.id, judge.id) in totals]
        average = math.fsum(total for _, total in present) / len(present) if present else None
        rows.append({
            'contestant_id': contestant.id,
            'candidate_number': contestant.number,
            'name': contestant.name,
            'exact_average': average,
            'judge_scores': [
                {'judge_id': judge.id, 'total_score': display(total)}
                for judge, total in present
            ]
        })

    rows = rank_rows(rows, 'exact_average', method)
    for row in rows:
        row['average'] = display(row.pop('exact_average'))

    return {
        'category_id': category.id,
        'category_label': category.label,
        'division': division,
        'rank_method': method,
        'judges': [{'id': judge.id, 'number': judge.number, 'name': judge.name} for judge in judges],
        'contestants': rows
    }


def leaderboard(division, rank_method=None):
    division = require_division(division)
    method = get_rank_method(rank_method)
    categories = Category.query.filter_by(is_active=True).order_by(Category.order, Category.id).all()
    contestants = get_division_contestants(division)
    judges = get_division_judges(division)
    judge_ids = [judge.id for judge in judges]
    contestant_ids = [contestant.id for contestant in contestants]

    rows = {
        contestant.id: {
            'contestant_id': contestant.id,
            'candidate_number': contestant.number,
            'name': contestant.name,
            'category_scores': [],
            'weighted_parts': [],
            'total_points': 0
        }
        for contestant in contestants
    }

    for category in categories:
        criteria_ids = [criterion.id for criterion in category.criteria]
        totals = collect_judge_totals(category.id, criteria_ids, judge_ids, contestant_ids)
        per_category = []
        for contestant in contestants:
            present = [totals[(contestant.id, judge_id)] for judge_id in judge_ids
                       if (contestant.id, judge_id) in totals]
            average = math.fsum(present) / len(present) if present else None
            per_category.append({'candidate_number': contestant.number, 'contestant_id': contestant.id,
                                 'average': average})
        for entry in rank_rows(per_category, 'average', method):
            row = rows[entry['contestant_id']]
            row['category_scores'].append({
                'category_id': category.id,
                'category_label': category.label,
                'average': display(entry['average']),
                'rank': entry['rank']
            })
            if entry['average'] is not None:
                row['weighted_parts'].append(entry['average'] * category.weight)
                row['total_points'] += entry['rank']

    results = []
    for row in rows.values():
        parts = row.pop('weighted_parts')
        row['total_score'] = display(math.fsum(parts)) if parts else None
        if not parts:
            row['total_points'] = None
        results.append(row)

    # Placement is by summed category ranks, lowest wins
    results = rank_rows(results, 'total_points', method, descending=False)

    return {
        'division': division,
        'rank_method': method,
        'categories': [{'id': category.id, 'label': category.label, 'weight': category.weight}
                       for category in categories],
        'contestants': results
    }


def progress(category_id, division=None):
    category = get_or_raise(Category, category_id, 'Category')
    divisions = [require_division(division)] if division else list(DIVISION_VALUES)

    judges_data = []
    for current_division in divisions:
        contestant_ids = [contestant.id for contestant in get_division_contestants(current_division)]
        for judge in get_division_judges(current_division, active_only=True):
            submitted = 0
            if contestant_ids:
                submitted = SubmissionLock.query.filter_by(judge_id=judge.id, category_id=category.id) \
                    .filter(SubmissionLock.contestant_id.in_(contestant_ids)).count()
            expected = len(contestant_ids)
            judges_data.append({
                'judge_id': judge.id,
                'judge_name': judge.name,
                'division': current_division,
                'submitted': submitted,
                'expected': expected,
                'percent': round((submitted / expected) * 100, 1) if expected else 0,
                'complete': expected > 0 and submitted >= expected
            })

    return {
        'category_id': category.id,
        'category_label': category.label,
        'judges': judges_data,
        'complete': bool(judges_data) and all(entry['complete'] for entry in judges_data)
    }
