from datetime import datetime, timezone

from georoyale import db, bcrypt
from flask_login import UserMixin


def _utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        if not password:
            return False
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Location(db.Model):
    """A guessable place in the round pool."""
    __tablename__ = 'location'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    country = db.Column(db.String(64), nullable=True)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    difficulty = db.Column(db.String(16), nullable=False, default='medium', index=True)  # easy, medium, hard
    category = db.Column(db.String(32), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self, include_coordinates=False):
        data = {
            'id': self.id,
            'name': self.name,
            'country': self.country,
            'difficulty': self.difficulty,
            'category': self.category,
        }
        if include_coordinates:
            data['latitude'] = self.latitude
            data['longitude'] = self.longitude
        return data
