"""
Seed script for the standard pageant categories and criteria.
Run once after creating the database; existing categories are left alone.
"""

from app import app, db, init_db
from models import Category, Criteria

CATEGORY_CONFIG = [
    ('production', 'Production Number', [
        ('poise-bearing', 'Poise and Bearing', 0.30),
        ('stage-deportment', 'Stage Deportment', 0.35),
        ('mastery', 'Mastery of the Choreography', 0.30),
        ('audience-impact', 'Audience Impact', 0.05),
    ]),
    ('runway', 'Runway', [
        ('creativity', 'Creativity and Style', 0.30),
        ('personality', 'Personality and Stage Presence', 0.20),
        ('costume', 'Suitability of the Costume', 0.30),
        ('projection', 'Poise, Bearing, and Projection', 0.20),
    ]),
    ('streetwear', 'Street Wear', [
        ('beauty-physique', 'Beauty and Physique', 0.30),
        ('stage-deportment', 'Stage Deportment', 0.30),
        ('poise-bearing', 'Poise and Bearing', 0.30),
        ('audience-impact', 'Audience Impact', 0.10),
    ]),
    ('free-speech', 'Free Speech', [
        ('content', 'Content & Substance', 0.40),
        ('delivery', 'Delivery & Presence', 0.30),
        ('theme', 'Alignment to Theme', 0.20),
        ('respect', 'Respectfulness & Positivity', 0.10),
    ]),
    ('formal', 'Modern Barong & Long Gown', [
        ('fitness-style', 'Fitness and Style', 0.20),
        ('beauty-elegance', 'Beauty and Elegance', 0.30),
        ('stage-deportment', 'Stage Deportment', 0.25),
        ('projection', 'Poise, Bearing, and Projection', 0.25),
    ]),
    ('interview', 'Interview', [
        ('wit', 'Wit and Content', 0.50),
        ('delivery', 'Delivery & Choice of Words', 0.25),
        ('poise', 'Poise and Bearing', 0.15),
        ('audience-impact', 'Audience Impact', 0.10),
    ]),
]

MAX_RAW_SCORE = 10


def seed_categories():
    created = 0
    for order, (slug, label, criteria) in enumerate(CATEGORY_CONFIG, 1):
        if Category.query.filter_by(slug=slug).first():
            continue
        category = Category(slug=slug, label=label, weight=1.0, order=order)
        for criterion_order, (criterion_slug, criterion_label, weight) in enumerate(criteria, 1):
            category.criteria.append(Criteria(
                slug=criterion_slug,
                label=criterion_label,
                max_score=MAX_RAW_SCORE,
                weight=weight,
                order=criterion_order
            ))
        db.session.add(category)
        created += 1
    db.session.commit()
    return created


if __name__ == '__main__':
    with app.app_context():
        init_db()
        count = seed_categories()
        print(f"✓ Seeded {count} categories.")
