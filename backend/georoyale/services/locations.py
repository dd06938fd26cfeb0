from sqlalchemy import func

from georoyale import db
from georoyale.models import Location

# name, country, latitude, longitude, difficulty, category
SEED_LOCATIONS = [
    ('Eiffel Tower', 'France', 48.8584, 2.2945, 'easy', 'landmark'),
    ('Colosseum', 'Italy', 41.8902, 12.4922, 'easy', 'landmark'),
    ('Times Square', 'United States', 40.7580, -73.9855, 'easy', 'urban'),
    ('Sydney Opera House', 'Australia', -33.8568, 151.2153, 'easy', 'landmark'),
    ('Shibuya Crossing', 'Japan', 35.6595, 139.7005, 'easy', 'urban'),
    ('Christ the Redeemer', 'Brazil', -22.9519, -43.2105, 'easy', 'landmark'),
    ('Brandenburg Gate', 'Germany', 52.5163, 13.3777, 'medium', 'landmark'),
    ('Plaza Mayor', 'Spain', 40.4155, -3.7074, 'medium', 'urban'),
    ('Table Mountain', 'South Africa', -33.9628, 18.4098, 'medium', 'nature'),
    ('Banff Avenue', 'Canada', 51.1784, -115.5708, 'medium', 'urban'),
    ('Hallstatt', 'Austria', 47.5622, 13.6493, 'medium', 'rural'),
    ('Old Town Square', 'Czech Republic', 50.0875, 14.4213, 'medium', 'urban'),
    ('Valparaiso', 'Chile', -33.0472, -71.6127, 'hard', 'urban'),
    ('Tromso', 'Norway', 69.6492, 18.9553, 'hard', 'rural'),
    ('Ushuaia', 'Argentina', -54.8019, -68.3030, 'hard', 'rural'),
    ('Ulaanbaatar', 'Mongolia', 47.8864, 106.9057, 'hard', 'urban'),
    ('Kandy', 'Sri Lanka', 7.2906, 80.6337, 'hard', 'rural'),
    ('Reykjavik Harbour', 'Iceland', 64.1500, -21.9400, 'hard', 'urban'),
]


def random_locations(count, difficulty=None, category=None):
    """Pick `count` random locations, coordinates included.

    `mixed` or an empty value disables the matching filter.
    """
    query = Location.query
    if difficulty and difficulty != 'mixed':
        query = query.filter(Location.difficulty == difficulty)
    if category and category != 'mixed':
        query = query.filter(Location.category == category)
    rows = query.order_by(func.random()).limit(int(count)).all()
    return [row.to_dict(include_coordinates=True) for row in rows]


def seed_locations():
    """Insert the built-in locations that are not present yet."""
    existing = {name for (name,) in db.session.query(Location.name).all()}
    added = 0
    for name, country, lat, lon, difficulty, category in SEED_LOCATIONS:
        if name in existing:
            continue
        db.session.add(Location(
            name=name,
            country=country,
            latitude=lat,
            longitude=lon,
            difficulty=difficulty,
            category=category,
        ))
        added += 1
    db.session.commit()
    return added
