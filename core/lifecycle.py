"""
core/lifecycle.py -- Process-wide initialization of the identity provider client.

The client handle is the only long-lived shared resource in the gateway. It is
built exactly once and then shared read-only by every request. Its readiness is
an explicit state machine rather than a free-floating flag:

    uninitialized -> initializing -> ready
                                  -> failed -> initializing (retry policy only)

Policies:
  fail_fast -- any failure aborts startup. Right for a single-process deploy
               where nothing can be served safely without the client.
  retry     -- a non-configuration failure leaves the state "failed" and a
               background tenacity loop retries with capped exponential
               backoff. Login and protected routes answer 503 until the state
               is "ready".

ConfigurationFatal (missing service-account variables) is fatal under BOTH
policies. Retrying cannot conjure a secret that was never supplied.

Layer rule: core/ may not import from api/, web/, auth/, or activity/. The
provider factory is injected, so this module never names a concrete client;
callers pick the client type through the generic parameter.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential,
)

from core.errors import ConfigurationFatal, ServiceNotReady

logger = logging.getLogger("pagegate.lifecycle")

ProviderT = TypeVar("ProviderT")


class InitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class InitPolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    RETRY = "retry"


class ProviderLifecycle(Generic[ProviderT]):
    """Owns the identity provider client and its initialization state.

    Usage:
        lifecycle = ProviderLifecycle(lambda: initialize_firebase(settings), policy="retry")
        await lifecycle.start()       # lifespan startup
        provider = lifecycle.provider # raises ServiceNotReady until ready
        await lifecycle.stop()        # lifespan shutdown

    max_retries counts retries after the first attempt; None retries forever.
    """

    def __init__(
        self,
        factory: Callable[[], ProviderT],
        policy: InitPolicy | str = InitPolicy.FAIL_FAST,
        retry_base_seconds: float = 1.0,
        retry_cap_seconds: float = 60.0,
        max_retries: Optional[int] = None,
    ) -> None:
        self._factory = factory
        self._policy = InitPolicy(policy)
        self._retry_base = retry_base_seconds
        self._retry_cap = retry_cap_seconds
        self._max_retries = max_retries
        self._state = InitState.UNINITIALIZED
        self._provider: Optional[ProviderT] = None
        self._attempts = 0
        self._last_error: str | None = None
        self._retry_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> InitState:
        return self._state

    @property
    def policy(self) -> InitPolicy:
        return self._policy

    @property
    def is_ready(self) -> bool:
        return self._state is InitState.READY

    @property
    def provider(self) -> ProviderT:
        """Return the ready client. Raises ServiceNotReady in any other state."""
        if self._state is not InitState.READY:
            raise ServiceNotReady()
        return self._provider

    def snapshot(self) -> dict:
        """State summary for /health. last_error is an exception class name, never its text."""
        return {
            "state": self._state.value,
            "attempts": self._attempts,
            "last_error": self._last_error,
        }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def initialize(self) -> ProviderT:
        """Run one synchronous initialization attempt and return the client.

        This is also the boot-time readiness check used by `main.py check`.
        Idempotent once ready: the existing client is returned unchanged.
        """
        if self._state is InitState.READY:
            return self._provider

        self._state = InitState.INITIALIZING
        self._attempts += 1
        try:
            provider = self._factory()
        except ConfigurationFatal as exc:
            self._state = InitState.FAILED
            self._last_error = "ConfigurationFatal"
            logger.critical("Identity provider configuration is unusable: %s", exc)
            raise
        except Exception as exc:
            self._state = InitState.FAILED
            self._last_error = type(exc).__name__
            logger.error("Identity provider initialization failed (attempt %d): %s", self._attempts, exc)
            raise

        self._provider = provider
        self._state = InitState.READY
        self._last_error = None
        logger.info("Identity provider ready after %d attempt(s)", self._attempts)
        return provider

    async def start(self) -> None:
        """Initialize according to the configured policy."""
        try:
            self.initialize()
        except ConfigurationFatal:
            raise
        except Exception:
            if self._policy is InitPolicy.FAIL_FAST:
                raise
            logger.warning("Serving 503 on protected routes until the identity provider is ready")
            self._retry_task = asyncio.create_task(self._retry_loop())

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_never if self._max_retries is None else stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._retry_base, min=self._retry_base, max=self._retry_cap),
            retry=retry_if_not_exception_type(ConfigurationFatal),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _retry_loop(self) -> None:
        # start() already made the first attempt; the first retry waits like the rest.
        await asyncio.sleep(self._retry_base)
        try:
            async for attempt in self._retrying():
                with attempt:
                    self.initialize()
        except Exception:
            logger.error("Giving up on identity provider initialization after %d attempts", self._attempts)

    async def wait_ready(self) -> bool:
        """Wait for a pending retry loop to finish. Returns readiness."""
        if self._retry_task is not None:
            await asyncio.shield(self._retry_task)
        return self.is_ready

    async def stop(self) -> None:
        """Cancel a pending retry loop. The client itself needs no teardown."""
        task, self._retry_task = self._retry_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
