"""
Bearer-token verification.

Tokens are minted by the account service; this side only checks the
signature and age and resolves the user.
"""

from functools import wraps

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from cronops.errors import AuthenticationError, AuthorizationError
from cronops.models import db
from cronops.models.user import User

TOKEN_SALT = 'access-token'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_access_token(user):
    return _serializer().dumps({'uid': user.id})


def load_user_from_token(token):
    try:
        payload = _serializer().loads(token, max_age=current_app.config['ACCESS_TOKEN_MAX_AGE'])
    except SignatureExpired:
        raise AuthenticationError('Access token expired')
    except BadSignature:
        raise AuthenticationError('Invalid access token')

    user = db.session.get(User, payload.get('uid')) if isinstance(payload, dict) else None
    if user is None:
        raise AuthenticationError('Unknown user')
    return user


def _authenticate():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        raise AuthenticationError('Missing bearer token')
    g.current_user = load_user_from_token(token.strip())
    return g.current_user


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        _authenticate()
        return view(*args, **kwargs)
    return wrapper


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        user = _authenticate()
        if not user.is_admin:
            raise AuthorizationError('Admin access required')
        return view(*args, **kwargs)
    return wrapper
