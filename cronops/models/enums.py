import enum


class Role(str, enum.Enum):
    USER = 'USER'
    ADMIN = 'ADMIN'


class Plan(str, enum.Enum):
    FREE = 'FREE'
    PREMIUM = 'PREMIUM'
    PRO = 'PRO'


class JobStatus(str, enum.Enum):
    ACTIVE = 'ACTIVE'
    PAUSED = 'PAUSED'


class TargetType(str, enum.Enum):
    HTTP = 'HTTP'
    SCRIPT = 'SCRIPT'


class HttpMethod(str, enum.Enum):
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'
    PATCH = 'PATCH'
    DELETE = 'DELETE'

    @property
    def sends_body(self):
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)


class ExecutionStatus(str, enum.Enum):
    RUNNING = 'RUNNING'
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'
    TIMEOUT = 'TIMEOUT'

    @property
    def is_terminal(self):
        return self is not ExecutionStatus.RUNNING


class Trigger(str, enum.Enum):
    SCHEDULE = 'SCHEDULE'
    MANUAL = 'MANUAL'


def values(enum_cls):
    return [member.value for member in enum_cls]
