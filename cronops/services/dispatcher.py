"""
Executes one firing of a job against its target and reports the outcome.

Targets are a closed set: HttpTarget or ScriptTarget. The dispatcher never
raises for execution problems; every outcome comes back as a
DispatchResult with a terminal status.
"""

import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import psutil
import requests

from cronops import __version__
from cronops.models.enums import ExecutionStatus, HttpMethod, TargetType

logger = logging.getLogger(__name__)

USER_AGENT = f"CronOps-Scheduler/{__version__}"
KILL_GRACE_SECONDS = 5


@dataclass
class HttpTarget:
    url: str
    method: str = HttpMethod.GET.value
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass
class ScriptTarget:
    command: str
    env: Dict[str, str] = field(default_factory=dict)


Target = Union[HttpTarget, ScriptTarget]


@dataclass
class DispatchResult:
    """Terminal outcome of one execution attempt"""
    status: ExecutionStatus
    status_code: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS


class _DeadlineExceeded(Exception):
    pass


class _Exchange:
    """An HTTP exchange another thread can abort by closing its response"""

    def __init__(self):
        self._lock = threading.Lock()
        self._response = None
        self.aborted = False

    def attach(self, response):
        """Keep the response for closing; False if the exchange was already aborted"""
        with self._lock:
            if not self.aborted:
                self._response = response
                return True
        response.close()
        return False

    def abort(self):
        with self._lock:
            self.aborted = True
        self.close()

    def close(self):
        with self._lock:
            response, self._response = self._response, None
        if response is not None:
            response.close()


def build_target(job) -> Target:
    """Tagged target for a job, selected by its targetType"""
    if job.target_type == TargetType.HTTP.value:
        method = HttpMethod(job.http_method or HttpMethod.GET.value)
        return HttpTarget(
            url=job.target_url,
            method=method.value,
            headers=dict(job.headers or {}),
            body=job.payload if method.sends_body else None,
        )
    return ScriptTarget(
        command=job.command,
        env={'CRONOPS_JOB_ID': str(job.id), 'CRONOPS_JOB_NAME': job.name or ''},
    )


def truncate(text, max_chars):
    if text is None or len(text) <= max_chars:
        return text
    return text[:max_chars] + '... [truncated]'


class Dispatcher:
    """Runs HTTP requests and shell commands with a hard timeout"""

    def __init__(self, session=None, max_chars=10000):
        self.session = session or requests.Session()
        self.max_chars = max_chars

    def dispatch(self, target: Target, timeout_ms: int) -> DispatchResult:
        if isinstance(target, HttpTarget):
            result = self._run_http(target, timeout_ms)
        elif isinstance(target, ScriptTarget):
            result = self._run_script(target, timeout_ms)
        else:
            raise TypeError(f"Unsupported target: {target!r}")

        result.response = truncate(result.response, self.max_chars)
        result.error = truncate(result.error, self.max_chars)
        return result

    # -- HTTP -------------------------------------------------------------

    def _run_http(self, target, timeout_ms):
        """
        Run the exchange on its own thread and wait at most ``timeout_ms``.

        requests only bounds each socket operation, so a server trickling
        bytes could hold the call open indefinitely. Past the deadline the
        exchange is aborted and the attempt reported as TIMEOUT.
        """
        exchange = _Exchange()
        outcome = {}

        def perform():
            try:
                outcome['result'] = self._perform_http(target, timeout_ms, exchange)
            except Exception as e:
                outcome['error'] = e

        worker = threading.Thread(target=perform, name=f"http {target.method} {target.url}", daemon=True)
        worker.start()
        worker.join(timeout_ms / 1000.0)

        if worker.is_alive():
            exchange.abort()
            logger.warning(f"HTTP {target.method} {target.url} aborted after {timeout_ms} ms")
            return DispatchResult(ExecutionStatus.TIMEOUT, error=f"Request timed out after {timeout_ms} ms")
        if 'error' in outcome:
            raise outcome['error']
        return outcome['result']

    def _perform_http(self, target, timeout_ms, exchange):
        timeout = timeout_ms / 1000.0
        deadline = time.monotonic() + timeout
        timeout_error = f"Request timed out after {timeout_ms} ms"

        headers = dict(target.headers)
        if not any(key.lower() == 'user-agent' for key in headers):
            headers['User-Agent'] = USER_AGENT

        logger.debug(f"HTTP {target.method} {target.url}")
        try:
            response = self.session.request(
                target.method,
                target.url,
                headers=headers,
                data=target.body.encode('utf-8') if target.body is not None else None,
                timeout=timeout,
                stream=True,
            )
        except requests.Timeout:
            return DispatchResult(ExecutionStatus.TIMEOUT, error=timeout_error)
        except requests.RequestException as e:
            return DispatchResult(ExecutionStatus.FAILED, error=f"Request failed: {e}")

        if not exchange.attach(response):
            return DispatchResult(ExecutionStatus.TIMEOUT, status_code=response.status_code, error=timeout_error)

        try:
            body = self._read_body(response, deadline, exchange)
        except (_DeadlineExceeded, requests.Timeout):
            return DispatchResult(ExecutionStatus.TIMEOUT, status_code=response.status_code, error=timeout_error)
        except requests.RequestException as e:
            return DispatchResult(ExecutionStatus.FAILED, status_code=response.status_code,
                                  error=f"Failed to read response: {e}")
        finally:
            exchange.close()

        if 200 <= response.status_code <= 299:
            return DispatchResult(ExecutionStatus.SUCCESS, status_code=response.status_code, response=body)
        return DispatchResult(
            ExecutionStatus.FAILED,
            status_code=response.status_code,
            response=body,
            error=f"HTTP {response.status_code}",
        )

    def _read_body(self, response, deadline, exchange):
        # Stop reading well past what will be kept
        byte_budget = self.max_chars * 4 + 1
        chunks = []
        size = 0
        for chunk in response.iter_content(chunk_size=8192):
            if exchange.aborted or time.monotonic() > deadline:
                raise _DeadlineExceeded()
            if size < byte_budget:
                chunks.append(chunk)
                size += len(chunk)
        if exchange.aborted or time.monotonic() > deadline:
            raise _DeadlineExceeded()
        return b''.join(chunks).decode(response.encoding or 'utf-8', errors='replace')

    # -- Script -----------------------------------------------------------

    def _run_script(self, target, timeout_ms):
        env = os.environ.copy()
        env.update(target.env)

        logger.debug(f"Running command: {target.command}")
        try:
            process = subprocess.Popen(
                target.command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            return DispatchResult(ExecutionStatus.FAILED, error=f"Failed to start command: {e}")

        try:
            stdout, stderr = process.communicate(timeout=timeout_ms / 1000.0)
        except subprocess.TimeoutExpired:
            self._kill_tree(process.pid)
            stdout, _ = process.communicate()
            return DispatchResult(
                ExecutionStatus.TIMEOUT,
                response=stdout or None,
                error=f"Script timed out after {timeout_ms} ms",
            )

        if process.returncode == 0:
            return DispatchResult(ExecutionStatus.SUCCESS, response=stdout)

        message = f"Exited with code {process.returncode}"
        if stderr and stderr.strip():
            message = f"{message}: {stderr.strip()}"
        return DispatchResult(ExecutionStatus.FAILED, response=stdout or None, error=message)

    @staticmethod
    def _kill_tree(pid):
        """Terminate a process and its descendants, force-killing stragglers"""
        try:
            parent = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return

        try:
            processes = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            processes = [parent]

        for proc in processes:
            try:
                proc.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue

        _, alive = psutil.wait_procs(processes, timeout=KILL_GRACE_SECONDS)
        for proc in alive:
            try:
                proc.kill()
                logger.warning(f"Force killed process {proc.pid}")
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
