import uuid

from cronops.models import db
from cronops.models.enums import JobStatus
from cronops.utils.dates import isoformat_z, utc_now


class CronJob(db.Model):
    """Scheduled HTTP request or shell command owned by a user"""
    __tablename__ = 'cron_jobs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)

    # Schedule
    cron_expression = db.Column(db.String(100), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default='UTC')

    # Target
    target_type = db.Column(db.String(10), nullable=False)
    target_url = db.Column(db.String(2048))
    http_method = db.Column(db.String(10))
    headers = db.Column(db.JSON)
    payload = db.Column(db.Text)
    command = db.Column(db.Text)

    # Policy
    max_retries = db.Column(db.Integer, nullable=False, default=3)
    retry_delay = db.Column(db.Integer)
    timeout = db.Column(db.Integer, nullable=False, default=30000)

    status = db.Column(db.String(10), nullable=False, default=JobStatus.ACTIVE.value, index=True)

    # Bookkeeping, written by the scheduler only
    last_run_at = db.Column(db.DateTime)
    last_status = db.Column(db.String(10))
    next_run_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now)

    # Relationships
    logs = db.relationship('ExecutionLog', backref='job', lazy=True, cascade='all, delete-orphan')

    @property
    def is_active(self):
        return self.status == JobStatus.ACTIVE.value

    def to_dict(self):
        """Convert job to dictionary for API responses"""
        return {
            'id': self.id,
            'userId': self.user_id,
            'name': self.name,
            'description': self.description,
            'cronExpression': self.cron_expression,
            'timezone': self.timezone,
            'targetType': self.target_type,
            'targetUrl': self.target_url,
            'httpMethod': self.http_method,
            'headers': self.headers,
            'payload': self.payload,
            'command': self.command,
            'maxRetries': self.max_retries,
            'retryDelay': self.retry_delay,
            'timeout': self.timeout,
            'status': self.status,
            'lastRunAt': isoformat_z(self.last_run_at),
            'lastStatus': self.last_status,
            'nextRunAt': isoformat_z(self.next_run_at),
            'createdAt': isoformat_z(self.created_at),
            'updatedAt': isoformat_z(self.updated_at),
        }

    def __repr__(self):
        return f'<CronJob {self.name}>'
