import uuid

from cronops.models import db
from cronops.models.enums import Plan, Role
from cronops.utils.dates import isoformat_z, utc_now


class User(db.Model):
    """Account that owns cron jobs; the plan drives quotas and scheduler resolution"""
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(255))
    role = db.Column(db.String(20), nullable=False, default=Role.USER.value)
    plan = db.Column(db.String(20), nullable=False, default=Plan.FREE.value)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now)

    # Relationships
    jobs = db.relationship('CronJob', backref='user', lazy=True, cascade='all, delete-orphan')

    @property
    def is_admin(self):
        return self.role == Role.ADMIN.value

    def to_dict(self):
        """Convert user to dictionary for API responses"""
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'plan': self.plan,
            'createdAt': isoformat_z(self.created_at),
            'updatedAt': isoformat_z(self.updated_at),
        }

    def __repr__(self):
        return f'<User {self.email}>'
