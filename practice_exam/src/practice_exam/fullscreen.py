"""
Fullscreen enforcement for exam sessions.

Capabilities wrap whatever actually controls fullscreen (a webview bridge,
a kiosk shell, nothing at all in headless runs) behind one interface that
emits a single normalised change notification. The guard turns an
unexpected exit into an automatic submission.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]

REQUEST_METHODS = (
    "requestFullscreen",
    "webkitRequestFullscreen",
    "mozRequestFullScreen",
    "msRequestFullscreen",
)
EXIT_METHODS = (
    "exitFullscreen",
    "webkitExitFullscreen",
    "mozCancelFullScreen",
    "msExitFullscreen",
)
ELEMENT_PROPERTIES = (
    "fullscreenElement",
    "webkitFullscreenElement",
    "mozFullScreenElement",
    "msFullscreenElement",
)
CHANGE_EVENTS = (
    "fullscreenchange",
    "webkitfullscreenchange",
    "mozfullscreenchange",
    "MSFullscreenChange",
)

BLOCKED_MESSAGE = "Fullscreen was blocked. Allow fullscreen for this site and try again."
EXIT_TIMEOUT_SECONDS = 2.0


class FullscreenError(Exception):
    """Fullscreen could not be entered."""


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class FullscreenCapability(ABC):
    """Request/exit fullscreen and observe changes."""

    def __init__(self):
        self._listeners: List[Listener] = []

    @abstractmethod
    async def request(self) -> None:
        """Enter fullscreen. Raises FullscreenError if it does not engage."""

    @abstractmethod
    async def exit(self) -> None:
        """Leave fullscreen if active."""

    @abstractmethod
    def is_active(self) -> bool:
        ...

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, active: bool) -> None:
        for listener in list(self._listeners):
            listener(active)


class HeadlessFullscreen(FullscreenCapability):
    """
    In-process fullscreen state for headless runners and tests.

    `user_exit()` simulates the student leaving fullscreen (Escape key,
    window switch).
    """

    def __init__(self, allow: bool = True):
        super().__init__()
        self.allow = allow
        self._active = False

    async def request(self) -> None:
        if not self.allow:
            raise FullscreenError(BLOCKED_MESSAGE)
        if not self._active:
            self._active = True
            self._notify(True)

    async def exit(self) -> None:
        if self._active:
            self._active = False
            self._notify(False)

    def user_exit(self) -> None:
        if self._active:
            self._active = False
            self._notify(False)

    def is_active(self) -> bool:
        return self._active


class VendorPrefixedFullscreen(FullscreenCapability):
    """
    Fullscreen over a browser-like bridge.

    `document` exposes the exit methods, the `*FullscreenElement` properties
    and `addEventListener` / `removeEventListener`; `element` (defaults to
    `document.documentElement`) exposes the request methods. Whichever
    standard or vendor-prefixed variant exists is used. Bridge methods may be
    plain callables or return awaitables.
    """

    def __init__(self, document: Any, element: Any = None):
        super().__init__()
        self.document = document
        self.element = element if element is not None else getattr(document, "documentElement", None)
        self._subscribed = False
        self._last_state = False

    def is_active(self) -> bool:
        return any(getattr(self.document, prop, None) for prop in ELEMENT_PROPERTIES)

    async def request(self) -> None:
        method = _first_method(self.element, REQUEST_METHODS)
        if method is None:
            raise FullscreenError("Fullscreen is not supported here.")
        try:
            await _maybe_await(method())
        except Exception as e:
            raise FullscreenError("Unable to enter fullscreen. Please try again or check browser settings.") from e

        if not self.is_active():
            raise FullscreenError(BLOCKED_MESSAGE)
        self._last_state = True

    async def exit(self) -> None:
        if not self.is_active():
            return
        method = _first_method(self.document, EXIT_METHODS)
        if method is not None:
            await _maybe_await(method())

    def add_listener(self, listener: Listener) -> None:
        super().add_listener(listener)
        if not self._subscribed:
            self._last_state = self.is_active()
            for event in CHANGE_EVENTS:
                self.document.addEventListener(event, self._on_raw_event)
            self._subscribed = True

    def remove_listener(self, listener: Listener) -> None:
        super().remove_listener(listener)
        if self._subscribed and not self._listeners:
            for event in CHANGE_EVENTS:
                self.document.removeEventListener(event, self._on_raw_event)
            self._subscribed = False

    def _on_raw_event(self, *_event: Any) -> None:
        # Browsers may fire several prefixed events for one change
        active = self.is_active()
        if active == self._last_state:
            return
        self._last_state = active
        self._notify(active)


def _first_method(target: Any, names) -> Optional[Callable[[], Any]]:
    if target is None:
        return None
    for name in names:
        method = getattr(target, name, None)
        if callable(method):
            return method
    return None


class FullscreenGuard:
    """
    Keeps an exam in fullscreen and auto-submits when the student leaves.

    The guard fires `on_exit` at most once per engagement, and only while
    `is_live()` reports an unsubmitted session with no submission in flight.
    """

    def __init__(
        self,
        capability: FullscreenCapability,
        on_exit: Callable[[], Awaitable[None]],
        is_live: Callable[[], bool] = lambda: True,
        exit_timeout: float = EXIT_TIMEOUT_SECONDS,
    ):
        self.capability = capability
        self.exit_timeout = exit_timeout
        self.on_exit = on_exit
        self.is_live = is_live
        self.engaged = False
        self.warning: Optional[str] = None
        self.pending: Optional[asyncio.Task] = None
        self._exiting = False

    @property
    def exiting(self) -> bool:
        return self._exiting

    async def engage(self) -> bool:
        """
        Enter fullscreen and start watching for exits.

        Returns:
            False (with `warning` set) if fullscreen was rejected
        """
        try:
            await self.capability.request()
        except FullscreenError as e:
            self.warning = str(e)
            logger.warning(f"⚠️ [FullscreenGuard] {e}")
            return False

        self.warning = None
        self._exiting = False
        self.engaged = True
        self.capability.add_listener(self._on_change)
        logger.info("🖥️ [FullscreenGuard] Fullscreen engaged")
        return True

    def dismiss_warning(self) -> None:
        self.warning = None

    def _on_change(self, active: bool) -> None:
        if active:
            return
        if not self.engaged or self._exiting or not self.is_live():
            return

        self._exiting = True
        self.engaged = False
        logger.warning("⚠️ [FullscreenGuard] Fullscreen exited, submitting automatically")
        self.pending = asyncio.get_running_loop().create_task(self.on_exit())

    async def _exit_within_timeout(self) -> None:
        await asyncio.wait_for(self.capability.exit(), timeout=self.exit_timeout)

    async def exit_quietly(self) -> None:
        """Leave fullscreen without treating it as a violation. Gives up after `exit_timeout`."""
        self.engaged = False
        try:
            await self._exit_within_timeout()
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ [FullscreenGuard] Fullscreen exit still pending after {self.exit_timeout:g}s, continuing")
        except Exception as e:
            logger.warning(f"⚠️ [FullscreenGuard] Could not exit fullscreen: {e}")

    async def release(self) -> None:
        """Stop watching and leave fullscreen. Never raises."""
        self.engaged = False
        self.capability.remove_listener(self._on_change)
        try:
            await self._exit_within_timeout()
        except asyncio.TimeoutError:
            logger.debug("[FullscreenGuard] Gave up waiting for fullscreen exit on release")
        except Exception as e:
            logger.debug(f"[FullscreenGuard] Ignoring exit failure on release: {e}")
