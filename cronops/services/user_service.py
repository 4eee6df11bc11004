import logging

from cronops.errors import ConflictError, CronOpsError, NotFoundError, ValidationError
from cronops.models import db
from cronops.models.enums import Plan, Role, values
from cronops.models.jobs import CronJob
from cronops.models.user import User
from cronops.utils.dates import utc_now
from cronops.utils.pagination import paginate

logger = logging.getLogger(__name__)


def _choice(field, value, enum_cls):
    if not isinstance(value, str) or value.upper() not in values(enum_cls):
        raise ValidationError(f"{field} must be one of: {', '.join(values(enum_cls))}")
    return value.upper()


class UserService:
    """Plan and role management"""

    def __init__(self, scheduler_service=None):
        self.scheduler_service = scheduler_service

    def _invalidate_user(self, user_id):
        if self.scheduler_service:
            self.scheduler_service.invalidate_user(user_id)

    @staticmethod
    def get_user(user_id):
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    @staticmethod
    def create_user(email, name=None, role=Role.USER.value, plan=Plan.FREE.value):
        if not email or '@' not in email:
            raise ValidationError('A valid email is required')
        if User.query.filter_by(email=email).first():
            raise ConflictError(f"User {email} already exists")
        user = User(
            email=email,
            name=name,
            role=_choice('role', role, Role),
            plan=_choice('plan', plan, Plan),
        )
        db.session.add(user)
        db.session.commit()
        logger.info(f"Created user {user.id}: {email}")
        return user

    def change_plan(self, user, plan):
        """Switch subscription plan; quotas and resolution follow immediately"""
        plan = _choice('plan', plan, Plan)
        try:
            previous = user.plan
            user.plan = plan
            user.updated_at = utc_now()
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to change plan for user {user.id}: {str(e)}")
            raise e

        logger.info(f"User {user.id} changed plan {previous} -> {plan}")
        self._invalidate_user(user.id)
        return user

    def change_role(self, admin, user_id, role):
        role = _choice('role', role, Role)
        user = self.get_user(user_id)
        if user.id == admin.id and role != Role.ADMIN.value:
            raise ConflictError('You cannot remove your own admin role')
        try:
            user.role = role
            user.updated_at = utc_now()
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to change role for user {user_id}: {str(e)}")
            raise e

        logger.info(f"Admin {admin.id} set role of user {user.id} to {role}")
        self._invalidate_user(user.id)
        return user

    def delete_user(self, admin, user_id):
        """Delete a user with all their jobs and logs"""
        user = self.get_user(user_id)
        if user.id == admin.id:
            raise ConflictError('You cannot delete your own account')
        try:
            email = user.email
            db.session.delete(user)
            db.session.commit()
        except CronOpsError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to delete user {user_id}: {str(e)}")
            raise e

        logger.info(f"Admin {admin.id} deleted user {user_id}: {email}")
        self._invalidate_user(user_id)
        return True

    @staticmethod
    def list_users(page, limit, search=None, plan=None, role=None):
        """Get a page of users with their job counts"""
        query = User.query
        if search:
            pattern = f"%{search}%"
            query = query.filter(db.or_(User.email.ilike(pattern), User.name.ilike(pattern)))
        if plan:
            query = query.filter(User.plan == _choice('plan', plan, Plan))
        if role:
            query = query.filter(User.role == _choice('role', role, Role))
        users, pagination = paginate(query.order_by(User.created_at.desc()), page, limit)

        counts = {}
        if users:
            rows = (
                db.session.query(CronJob.user_id, db.func.count(CronJob.id))
                .filter(CronJob.user_id.in_([u.id for u in users]))
                .group_by(CronJob.user_id)
                .all()
            )
            counts = dict(rows)

        items = []
        for user in users:
            data = user.to_dict()
            data['jobCount'] = counts.get(user.id, 0)
            items.append(data)
        return items, pagination
