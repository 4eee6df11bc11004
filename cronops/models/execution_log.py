import json
import uuid

from cronops.errors import InvalidTransitionError
from cronops.models import db
from cronops.models.enums import ExecutionStatus, Trigger
from cronops.utils.dates import isoformat_z, utc_now


class ExecutionLog(db.Model):
    """One execution attempt of a cron job"""
    __tablename__ = 'execution_logs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    cron_job_id = db.Column(db.String(36), db.ForeignKey('cron_jobs.id'), nullable=False, index=True)
    status = db.Column(db.String(10), nullable=False, default=ExecutionStatus.RUNNING.value, index=True)
    status_code = db.Column(db.Integer)
    response = db.Column(db.Text)
    error = db.Column(db.Text)
    attempt = db.Column(db.Integer, nullable=False, default=1)
    trigger = db.Column(db.String(10), nullable=False, default=Trigger.SCHEDULE.value)
    started_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    finished_at = db.Column(db.DateTime)
    duration = db.Column(db.Integer)

    @property
    def is_running(self):
        """Check if execution is still running"""
        return self.status == ExecutionStatus.RUNNING.value

    @property
    def is_completed(self):
        """Check if execution reached a terminal state"""
        return ExecutionStatus(self.status).is_terminal

    def finish(self, status, finished_at, status_code=None, response=None, error=None):
        """Move RUNNING to a terminal state; happens exactly once"""
        status = ExecutionStatus(status)
        if self.is_completed:
            raise InvalidTransitionError(f"Execution {self.id} is already {self.status}")
        if not status.is_terminal:
            raise InvalidTransitionError(f"Execution {self.id} cannot transition to {status.value}")

        finished_at = max(finished_at, self.started_at)
        self.status = status.value
        self.finished_at = finished_at
        self.duration = int((finished_at - self.started_at).total_seconds() * 1000)
        self.status_code = status_code
        self.response = response
        self.error = error if status is not ExecutionStatus.SUCCESS else None

    def response_body(self):
        if self.response is None:
            return None
        try:
            parsed = json.loads(self.response)
        except ValueError:
            return self.response
        return parsed if isinstance(parsed, (dict, list)) else self.response

    def to_dict(self, include_owner=False):
        """Convert execution log to dictionary for API responses"""
        job = {'id': self.job.id, 'name': self.job.name} if self.job else None
        if job and include_owner:
            job['user'] = {'id': self.job.user.id, 'email': self.job.user.email}
        return {
            'id': self.id,
            'cronJobId': self.cron_job_id,
            'cronJob': job,
            'status': self.status,
            'statusCode': self.status_code,
            'response': self.response_body(),
            'error': self.error,
            'duration': self.duration,
            'attempt': self.attempt,
            'trigger': self.trigger,
            'startedAt': isoformat_z(self.started_at),
            'finishedAt': isoformat_z(self.finished_at),
        }

    def __repr__(self):
        return f'<ExecutionLog {self.id} - {self.status}>'
