"""Validation of job payloads coming from the API"""

from urllib.parse import urlparse

from flask import current_app

from cronops.errors import ValidationError
from cronops.models.enums import HttpMethod, JobStatus, TargetType, values
from cronops.services.schedule import validate_cron_expression, validate_timezone

# API field name -> model attribute
JOB_FIELDS = {
    'name': 'name',
    'description': 'description',
    'cronExpression': 'cron_expression',
    'timezone': 'timezone',
    'targetType': 'target_type',
    'targetUrl': 'target_url',
    'httpMethod': 'http_method',
    'headers': 'headers',
    'payload': 'payload',
    'command': 'command',
    'maxRetries': 'max_retries',
    'retryDelay': 'retry_delay',
    'timeout': 'timeout',
    'status': 'status',
}

HTTP_ONLY_FIELDS = ('target_url', 'http_method', 'headers', 'payload')


def job_defaults():
    config = current_app.config
    return {
        'description': None,
        'timezone': 'UTC',
        'http_method': HttpMethod.GET.value,
        'headers': None,
        'payload': None,
        'target_url': None,
        'command': None,
        'max_retries': config['DEFAULT_MAX_RETRIES'],
        'retry_delay': None,
        'timeout': config['DEFAULT_TIMEOUT_MS'],
        'status': JobStatus.ACTIVE.value,
    }


def _require_int(field, value, minimum, maximum, nullable=False):
    if value is None and nullable:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < minimum or value > maximum:
        raise ValidationError(f"{field} must be between {minimum} and {maximum}")
    return value


def _choice(field, value, enum_cls):
    if not isinstance(value, str) or value.upper() not in values(enum_cls):
        raise ValidationError(f"{field} must be one of: {', '.join(values(enum_cls))}")
    return value.upper()


def _validate_url(url):
    if not isinstance(url, str) or not url.strip():
        raise ValidationError('targetUrl is required for HTTP jobs')
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValidationError(f"targetUrl must be an absolute http(s) URL, got '{url}'")
    return url.strip()


def _validate_headers(headers):
    if headers is None:
        return None
    if not isinstance(headers, dict):
        raise ValidationError('headers must be an object of string values')
    for key, value in headers.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError('headers must be an object of string values')
    return headers or None


def validate_job_data(data, current=None):
    """
    Merge an API payload over the current job fields (or defaults) and
    validate the result as a whole.

    Returns model attribute values. Exactly one target representation
    is kept, the one selected by targetType.
    """
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')

    unknown = sorted(set(data) - set(JOB_FIELDS) - {'id', 'userId', 'lastRunAt', 'lastStatus',
                                                    'nextRunAt', 'createdAt', 'updatedAt'})
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

    fields = dict(current) if current is not None else job_defaults()
    for api_name, attr in JOB_FIELDS.items():
        if api_name in data:
            fields[attr] = data[api_name]

    config = current_app.config

    name = fields.get('name')
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('name is required')
    if len(name.strip()) > 255:
        raise ValidationError('name must be at most 255 characters')
    fields['name'] = name.strip()

    if fields.get('description') is not None and not isinstance(fields['description'], str):
        raise ValidationError('description must be a string')

    fields['cron_expression'] = validate_cron_expression(fields.get('cron_expression'))
    fields['timezone'] = validate_timezone(fields.get('timezone') or 'UTC')

    if fields.get('target_type') is None:
        raise ValidationError('targetType is required')
    fields['target_type'] = _choice('targetType', fields['target_type'], TargetType)

    if fields['target_type'] == TargetType.HTTP.value:
        fields['target_url'] = _validate_url(fields.get('target_url'))
        fields['http_method'] = _choice('httpMethod', fields.get('http_method') or HttpMethod.GET.value, HttpMethod)
        fields['headers'] = _validate_headers(fields.get('headers'))
        if fields.get('payload') is not None and not isinstance(fields['payload'], str):
            raise ValidationError('payload must be a string')
        fields['command'] = None
    else:
        if not config['SCRIPT_TARGETS_ENABLED']:
            raise ValidationError('Script jobs are disabled on this server')
        command = fields.get('command')
        if not isinstance(command, str) or not command.strip():
            raise ValidationError('command is required for SCRIPT jobs')
        fields['command'] = command.strip()
        for attr in HTTP_ONLY_FIELDS:
            fields[attr] = None

    fields['max_retries'] = _require_int('maxRetries', fields.get('max_retries'), 0, config['MAX_RETRIES_LIMIT'])
    fields['retry_delay'] = _require_int('retryDelay', fields.get('retry_delay'), 0,
                                         config['MAX_RETRY_DELAY_SECONDS'], nullable=True)
    fields['timeout'] = _require_int('timeout', fields.get('timeout'), 1, config['MAX_TIMEOUT_MS'])
    fields['status'] = _choice('status', fields.get('status') or JobStatus.ACTIVE.value, JobStatus)

    return fields


def job_fields(job):
    """Current user-editable fields of a job, keyed by model attribute"""
    return {attr: getattr(job, attr) for attr in JOB_FIELDS.values()}
