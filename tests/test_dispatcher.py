import socket
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from cronops.models.enums import ExecutionStatus
from cronops.services.dispatcher import Dispatcher, HttpTarget, ScriptTarget, build_target


def fake_response(status_code=200, chunks=(b'ok',), encoding='utf-8'):
    response = MagicMock()
    response.status_code = status_code
    response.encoding = encoding
    response.iter_content.return_value = iter(chunks)
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def dispatcher(session):
    return Dispatcher(session=session, max_chars=100)


class TestBuildTarget:
    def test_http_target_keeps_body_for_post(self, user, make_job):
        job = make_job(user, http_method='POST', payload='{"a": 1}', headers={'X-Token': 't'})
        target = build_target(job)
        assert target == HttpTarget(url='https://example.com/hook', method='POST',
                                    headers={'X-Token': 't'}, body='{"a": 1}')

    def test_http_target_drops_body_for_get(self, user, make_job):
        job = make_job(user, http_method='GET', payload='ignored')
        assert build_target(job).body is None

    def test_script_target(self, user, make_job):
        job = make_job(user, target_type='SCRIPT', target_url=None, http_method=None, command='echo hi')
        target = build_target(job)
        assert isinstance(target, ScriptTarget)
        assert target.command == 'echo hi'
        assert target.env['CRONOPS_JOB_ID'] == job.id


class TestHttp:
    def test_2xx_is_success(self, dispatcher, session):
        session.request.return_value = fake_response(204, chunks=[b''])
        result = dispatcher.dispatch(HttpTarget(url='https://example.com'), 1000)
        assert result.status is ExecutionStatus.SUCCESS
        assert result.status_code == 204
        assert result.error is None

    def test_non_2xx_is_failure(self, dispatcher, session):
        session.request.return_value = fake_response(500, chunks=[b'internal error'])
        result = dispatcher.dispatch(HttpTarget(url='https://example.com'), 1000)
        assert result.status is ExecutionStatus.FAILED
        assert result.status_code == 500
        assert result.response == 'internal error'
        assert result.error == 'HTTP 500'

    def test_redirect_status_is_failure(self, dispatcher, session):
        session.request.return_value = fake_response(301)
        assert dispatcher.dispatch(HttpTarget(url='https://example.com'), 1000).status is ExecutionStatus.FAILED

    def test_connection_error_is_failure(self, dispatcher, session):
        session.request.side_effect = requests.ConnectionError('refused')
        result = dispatcher.dispatch(HttpTarget(url='https://example.com'), 1000)
        assert result.status is ExecutionStatus.FAILED
        assert 'refused' in result.error

    def test_request_timeout(self, dispatcher, session):
        session.request.side_effect = requests.ReadTimeout()
        result = dispatcher.dispatch(HttpTarget(url='https://example.com'), 1500)
        assert result.status is ExecutionStatus.TIMEOUT
        assert result.error == 'Request timed out after 1500 ms'

    def test_slow_body_hits_deadline(self, dispatcher, session):
        def slow_chunks():
            yield b'part'
            time.sleep(0.1)
            yield b'more'

        response = fake_response(200)
        response.iter_content.return_value = slow_chunks()
        session.request.return_value = response
        result = dispatcher.dispatch(HttpTarget(url='https://example.com'), 50)
        assert result.status is ExecutionStatus.TIMEOUT
        response.close.assert_called_once()

    def test_request_arguments(self, dispatcher, session):
        session.request.return_value = fake_response()
        dispatcher.dispatch(HttpTarget(url='https://example.com/x', method='POST',
                                       headers={'X-A': '1'}, body='payload'), 2000)
        args, kwargs = session.request.call_args
        assert args == ('POST', 'https://example.com/x')
        assert kwargs['data'] == b'payload'
        assert kwargs['timeout'] == 2.0
        assert kwargs['headers']['X-A'] == '1'
        assert kwargs['headers']['User-Agent'].startswith('CronOps-Scheduler/')

    def test_custom_user_agent_is_kept(self, dispatcher, session):
        session.request.return_value = fake_response()
        dispatcher.dispatch(HttpTarget(url='https://example.com', headers={'user-agent': 'mine'}), 1000)
        headers = session.request.call_args.kwargs['headers']
        assert headers == {'user-agent': 'mine'}

    def test_response_is_truncated(self, dispatcher, session):
        session.request.return_value = fake_response(200, chunks=[b'x' * 500])
        result = dispatcher.dispatch(HttpTarget(url='https://example.com'), 1000)
        assert result.response.startswith('x' * 100)
        assert result.response.endswith('[truncated]')


@pytest.fixture
def trickling_server():
    """Local server that keeps sending response headers without ever finishing them"""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(('127.0.0.1', 0))
    listener.listen(1)
    listener.settimeout(5)
    stop = threading.Event()

    def serve():
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            conn.recv(65536)
            try:
                conn.sendall(b'HTTP/1.1 200 OK\r\n')
                n = 0
                while not stop.wait(0.3):
                    n += 1
                    conn.sendall(f"X-Slow-{n}: yes\r\n".encode('ascii'))
            except OSError:
                pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    host, port = listener.getsockname()
    yield f"http://{host}:{port}/"
    stop.set()
    thread.join(timeout=5)
    listener.close()


def test_trickled_headers_cannot_outlast_timeout(trickling_server):
    session = requests.Session()
    session.trust_env = False
    dispatcher = Dispatcher(session=session)

    started = time.monotonic()
    result = dispatcher.dispatch(HttpTarget(url=trickling_server), 1000)
    elapsed = time.monotonic() - started

    assert result.status is ExecutionStatus.TIMEOUT
    assert result.error == 'Request timed out after 1000 ms'
    assert elapsed < 1.8


class TestScript:
    def test_zero_exit_is_success(self):
        result = Dispatcher().dispatch(ScriptTarget(command='echo hello'), 5000)
        assert result.status is ExecutionStatus.SUCCESS
        assert result.response.strip() == 'hello'
        assert result.error is None

    def test_non_zero_exit_is_failure(self):
        result = Dispatcher().dispatch(ScriptTarget(command='echo oops >&2; exit 3'), 5000)
        assert result.status is ExecutionStatus.FAILED
        assert result.error == 'Exited with code 3: oops'

    def test_job_environment_is_passed(self):
        target = ScriptTarget(command='echo "$CRONOPS_JOB_NAME"', env={'CRONOPS_JOB_NAME': 'nightly'})
        result = Dispatcher().dispatch(target, 5000)
        assert result.response.strip() == 'nightly'

    def test_timeout_kills_process(self):
        started = time.monotonic()
        result = Dispatcher().dispatch(ScriptTarget(command='sleep 5'), 300)
        elapsed = time.monotonic() - started

        assert result.status is ExecutionStatus.TIMEOUT
        assert result.error == 'Script timed out after 300 ms'
        assert elapsed < 4
