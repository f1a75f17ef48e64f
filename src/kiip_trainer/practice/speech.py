"""Fire-and-forget bridge to an external speech playback service."""

import asyncio
import inspect
import queue
import threading
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()

Speaker = Callable[[str], Awaitable[None] | None]

# Keep references so scheduled playback tasks are not garbage collected mid-flight
_pending: set[asyncio.Task] = set()

# Blocking speakers run one at a time on a daemon worker, in request order
_requests: queue.Queue[tuple[Speaker, str, asyncio.AbstractEventLoop | None]] = queue.Queue()
_worker: threading.Thread | None = None
_worker_lock = threading.Lock()


async def _await_playback(request: Awaitable[None], text: str) -> None:
    try:
        await request
    except Exception as e:
        logger.warning("speech_request_failed", text=text, error=str(e))


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _schedule(result: Awaitable[None], text: str) -> None:
    loop = _running_loop()
    if loop is None:
        logger.debug("speech_request_dropped_no_loop", text=text)
        if inspect.iscoroutine(result):
            result.close()
        return
    task = loop.create_task(_await_playback(result, text))
    _pending.add(task)
    task.add_done_callback(_pending.discard)


def _worker_loop() -> None:
    """Background thread: call blocking speakers pulled from the queue."""
    while True:
        speaker, text, loop = _requests.get()
        try:
            result = speaker(text)
            if inspect.isawaitable(result):
                if loop is not None and not loop.is_closed():
                    asyncio.run_coroutine_threadsafe(_await_playback(result, text), loop)
                else:
                    logger.debug("speech_request_dropped_no_loop", text=text)
                    if inspect.iscoroutine(result):
                        result.close()
        except Exception as e:
            logger.warning("speech_request_failed", text=text, error=str(e))
        finally:
            _requests.task_done()


def _ensure_worker() -> None:
    global _worker
    with _worker_lock:
        if _worker is None or not _worker.is_alive():
            _worker = threading.Thread(target=_worker_loop, name="speech", daemon=True)
            _worker.start()


def speak_and_forget(speaker: Speaker | None, text: str) -> None:
    """Request playback of ``text`` without waiting for or propagating the result.

    Coroutine speakers are scheduled on the running event loop. Any other
    speaker is queued for a background thread, so a blocking call never
    holds up the caller. Failures are logged and dropped.
    """
    if speaker is None or not text:
        return

    if inspect.iscoroutinefunction(speaker):
        try:
            result = speaker(text)
        except Exception as e:
            logger.warning("speech_request_failed", text=text, error=str(e))
            return
        _schedule(result, text)
        return

    _ensure_worker()
    _requests.put((speaker, text, _running_loop()))


def wait_for_speech() -> None:
    """Block until every queued blocking request has been handed to its speaker."""
    _requests.join()
