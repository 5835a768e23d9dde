"""Executor: sends RequestDescriptors over HTTP and captures the outcome.

Network problems are returned as ``Failure`` values rather than raised:
the point of the tool is to show a failed call to the user. Each call makes
exactly one request; redirects are not followed and nothing is retried.
"""

import math
import socket
import ssl
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import httpx

from api_workbench.config import Settings
from api_workbench.execution.models import ExecutionResult, Failure, FailureKind, Response
from api_workbench.log import get_logger
from api_workbench.request.models import RequestDescriptor

logger = get_logger(__name__)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "name resolution",
)

_TLS_MARKERS = ("certificate", "ssl", "tls")

_POLL_INTERVAL = 0.05


class _Cancelled(Exception):
    pass


class _DeadlineExceeded(Exception):
    pass


class _Exchange:
    """One request/response exchange running on its own thread.

    Sockets opened for the exchange are recorded through the httpcore trace
    hook so ``abort()`` can shut them down and unblock the thread.
    """

    def __init__(self) -> None:
        self.finished = threading.Event()
        self.result: ExecutionResult | None = None
        self.error: Exception | None = None
        self.aborted = False
        self._sockets: list[socket.socket] = []
        self._lock = threading.Lock()

    def run(self, fn: Callable[[], ExecutionResult]) -> None:
        try:
            self.result = fn()
        except Exception as e:  # noqa: BLE001 - re-raised on the waiting thread
            self.error = e
        finally:
            self.finished.set()

    def trace(self, event_name: str, info: dict) -> None:
        if not event_name.endswith("connect_tcp.complete"):
            return
        stream = info.get("return_value")
        sock = stream.get_extra_info("socket") if stream is not None else None
        if sock is None:
            return
        with self._lock:
            self._sockets.append(sock)
            aborted = self.aborted
        if aborted:
            _shutdown(sock)

    def abort(self) -> None:
        with self._lock:
            self.aborted = True
            sockets = list(self._sockets)
        for sock in sockets:
            _shutdown(sock)


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug("socket_shutdown_failed", error=str(e))


class ExecutionHandle:
    """Future-like handle for one in-flight execution.

    The handle resolves exactly once: with the worker's result, or with a
    ``cancelled`` Failure if ``cancel()`` gets there first. Completion
    callbacks run before ``result()`` returns to any waiter.
    """

    def __init__(self, request: RequestDescriptor, timeout: float):
        self.request = request
        self.timeout = timeout
        self._future: Future = Future()
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._resolved = False
        self._callbacks: list[Callable[["ExecutionHandle", ExecutionResult], Any]] = []
        self._started = time.monotonic()

    @property
    def in_flight(self) -> bool:
        return not self._future.done()

    def done(self) -> bool:
        return self._future.done()

    def result(self, wait: float | None = None) -> ExecutionResult:
        """Block until resolved (or ``wait`` seconds pass, raising TimeoutError)."""
        return self._future.result(timeout=wait)

    def cancel(self) -> bool:
        """Cancel the execution. Returns False if it had already finished."""
        resolved = self._resolve(
            Failure(
                kind=FailureKind.CANCELLED,
                message="Cancelled by caller",
                elapsed=time.monotonic() - self._started,
            ),
            cancel=True,
        )
        if resolved:
            logger.info("execution_cancelled", method=self.request.method, url=self.request.url)
        return resolved

    def add_done_callback(self, fn: Callable[["ExecutionHandle", ExecutionResult], Any]) -> None:
        """Call ``fn(handle, result)`` once the handle resolves.

        Runs immediately on the calling thread if it already has.
        """
        with self._lock:
            if not self._resolved:
                self._callbacks.append(fn)
                return
        fn(self, self._future.result())

    def _resolve(self, result: ExecutionResult, cancel: bool = False) -> bool:
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
            if cancel:
                self._cancel_event.set()
            callbacks = list(self._callbacks)
        for fn in callbacks:
            try:
                fn(self, result)
            except Exception:
                logger.exception("execution_callback_failed", url=self.request.url)
        self._future.set_result(result)
        return True


class Executor:
    """Dispatches requests with one shared httpx client.

    Usage:
        with Executor(settings) as executor:
            result = executor.execute(descriptor, timeout=5)

    Or in the background:
        handle = executor.submit(descriptor, timeout=5)
        handle.cancel()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._client = httpx.Client(
            verify=self.settings.verify_tls,
            follow_redirects=False,
            transport=transport,
            headers={"User-Agent": self.settings.user_agent},
        )
        self._pool = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="api-workbench",
        )
        self._handles: set[ExecutionHandle] = set()
        self._handles_lock = threading.Lock()

    def __enter__(self) -> "Executor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Cancel anything still in flight and release the connection pool."""
        with self._handles_lock:
            pending = list(self._handles)
        for handle in pending:
            handle.cancel()
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._client.close()

    def submit(self, request: RequestDescriptor, timeout: float | None = None) -> ExecutionHandle:
        """Run ``execute`` on a worker thread and return a cancellable handle."""
        timeout = self._timeout(timeout)
        handle = ExecutionHandle(request, timeout)
        with self._handles_lock:
            self._handles.add(handle)
        handle.add_done_callback(self._forget)

        def run() -> None:
            try:
                result = self.execute(request, timeout, cancel_event=handle._cancel_event)
            except Exception as e:  # noqa: BLE001
                logger.error("execution_crashed", url=request.url, error=str(e), exc_info=True)
                result = Failure(kind=FailureKind.OTHER, message=f"{type(e).__name__}: {e}")
            handle._resolve(result)

        self._pool.submit(run)
        return handle

    def execute(
        self,
        request: RequestDescriptor,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Send ``request`` once and capture a Response or a Failure.

        ``timeout`` bounds the whole exchange, from name lookup to the last
        body byte. The exchange runs on its own thread so a peer that trickles
        bytes cannot hold the caller past the deadline.
        """
        timeout = self._timeout(timeout)
        started = time.monotonic()
        deadline = started + timeout
        logger.debug("request_dispatched", method=request.method, url=request.url, timeout=timeout)

        exchange = _Exchange()
        worker = threading.Thread(
            target=exchange.run,
            args=(lambda: self._exchange(request, timeout, started, deadline, exchange, cancel_event),),
            name="api-workbench-exchange",
            daemon=True,
        )
        worker.start()

        while not exchange.finished.wait(max(0.0, min(_POLL_INTERVAL, deadline - time.monotonic()))):
            if cancel_event is not None and cancel_event.is_set():
                exchange.abort()
                return self._failure(request, FailureKind.CANCELLED, "Cancelled by caller", started)
            if time.monotonic() >= deadline:
                exchange.abort()
                return self._failure(
                    request, FailureKind.TIMEOUT, f"No complete response within {timeout:g}s", started
                )

        if exchange.error is not None:
            raise exchange.error
        return exchange.result

    def _exchange(
        self,
        request: RequestDescriptor,
        timeout: float,
        started: float,
        deadline: float,
        exchange: "_Exchange",
        cancel_event: threading.Event | None,
    ) -> ExecutionResult:
        try:
            http_request = self._client.build_request(
                request.method,
                request.url,
                headers=list(request.headers),
                content=request.body,
                timeout=httpx.Timeout(timeout),
                extensions={"trace": exchange.trace},
            )
            response = self._client.send(http_request, stream=True)
            try:
                body, truncated = self._read_body(response, deadline, cancel_event)
            finally:
                # An unread body closes the connection instead of returning it to the pool
                response.close()
        except _Cancelled:
            return self._failure(request, FailureKind.CANCELLED, "Cancelled by caller", started)
        except _DeadlineExceeded:
            return self._failure(
                request, FailureKind.TIMEOUT, f"No complete response within {timeout:g}s", started
            )
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, OSError, ValueError) as e:
            if exchange.aborted:
                # The caller already reported the deadline
                return Failure(kind=FailureKind.TIMEOUT, message=str(e), elapsed=time.monotonic() - started)
            kind = classify_failure(e)
            return self._failure(request, kind, str(e) or type(e).__name__, started)

        result = Response(
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            http_version=response.http_version,
            url=str(response.url),
            headers=tuple(
                (key.decode("latin-1"), value.decode("latin-1"))
                for key, value in response.headers.raw
            ),
            body=body,
            truncated=truncated,
            elapsed=time.monotonic() - started,
        )
        logger.debug(
            "response_received",
            url=request.url,
            status=result.status_code,
            elapsed=round(result.elapsed, 4),
            body_bytes=len(body),
            truncated=truncated,
        )
        return result

    def _read_body(
        self,
        response: httpx.Response,
        deadline: float,
        cancel_event: threading.Event | None,
    ) -> tuple[bytes, bool]:
        limit = self.settings.max_body_bytes
        chunks: list[bytes] = []
        size = 0
        for chunk in response.iter_bytes():
            if cancel_event is not None and cancel_event.is_set():
                raise _Cancelled
            if time.monotonic() > deadline:
                raise _DeadlineExceeded
            remaining = limit - size
            if len(chunk) > remaining:
                chunks.append(chunk[:remaining])
                return b"".join(chunks), True
            chunks.append(chunk)
            size += len(chunk)
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled
        return b"".join(chunks), False

    def _failure(
        self, request: RequestDescriptor, kind: FailureKind, message: str, started: float
    ) -> Failure:
        failure = Failure(kind=kind, message=message, elapsed=time.monotonic() - started)
        logger.info(
            "request_failed",
            method=request.method,
            url=request.url,
            kind=kind.value,
            error=message,
        )
        return failure

    def _timeout(self, timeout: float | None) -> float:
        if timeout is None:
            timeout = self.settings.timeout
        if (
            isinstance(timeout, bool)
            or not isinstance(timeout, (int, float))
            or not math.isfinite(timeout)
            or timeout <= 0
        ):
            raise ValueError(f"timeout must be a positive number of seconds, got {timeout!r}")
        return float(timeout)

    def _forget(self, handle: ExecutionHandle, result: ExecutionResult) -> None:
        with self._handles_lock:
            self._handles.discard(handle)


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception (and its causes) onto a FailureKind."""
    chain = _exception_chain(exc)
    text = " ".join(str(e) for e in chain).lower()

    if any(isinstance(e, (httpx.TimeoutException, TimeoutError)) for e in chain):
        return FailureKind.TIMEOUT
    if any(isinstance(e, ssl.SSLError) for e in chain) or any(m in text for m in _TLS_MARKERS):
        return FailureKind.TLS_ERROR
    if any(isinstance(e, socket.gaierror) for e in chain) or any(m in text for m in _DNS_MARKERS):
        return FailureKind.DNS_FAILURE
    if any(isinstance(e, ConnectionRefusedError) for e in chain) or "refused" in text:
        return FailureKind.CONNECTION_REFUSED
    return FailureKind.OTHER


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain = []
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain
