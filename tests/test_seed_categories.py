import pytest

from models import Category
from seed_categories import CATEGORY_CONFIG, seed_categories


def test_seed_creates_categories_once(app):
    assert seed_categories() == len(CATEGORY_CONFIG)
    assert seed_categories() == 0

    runway = Category.query.filter_by(slug='runway').one()
    assert [c.order for c in runway.criteria] == [1, 2, 3, 4]
    assert all(c.max_score == 10 for c in runway.criteria)


@pytest.mark.parametrize('slug, label, criteria', CATEGORY_CONFIG)
def test_criterion_weights_sum_to_one(slug, label, criteria):
    assert sum(weight for _, _, weight in criteria) == pytest.approx(1.0)
