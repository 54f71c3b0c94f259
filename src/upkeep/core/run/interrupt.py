"""
Interrupt handling for clean shutdown of a run.

Provides signal handling (SIGINT/SIGTERM) for the executor. The handler
implements a two-stage interrupt model:
1. First interrupt: sets the abort flag; the executor stops dispatching new
   tasks and lets in-flight git and link operations finish
2. Second interrupt: force exits with SystemExit(130)

Usage:
    >>> handler = InterruptHandler()
    >>> handler.register()
    >>> report = run(config, interrupt=handler)
    >>> handler.unregister()
"""

from __future__ import annotations

import signal
import sys
import threading
from typing import Any


class InterruptHandler:
    """
    Handles SIGINT/SIGTERM signals for cooperative run shutdown.

    Attributes:
        interrupted: True once an interrupt was received (or ``trigger()``
                     was called). The executor checks it between dispatches.
    """

    def __init__(self) -> None:
        """Initialize the interrupt handler with no interrupts received."""
        self._event = threading.Event()
        self._original_sigint: Any = None
        self._original_sigterm: Any = None

    @property
    def interrupted(self) -> bool:
        """Check if an interrupt has been received."""
        return self._event.is_set()

    def register(self) -> None:
        """
        Register signal handlers for SIGINT and SIGTERM.

        Must be called from the main thread. Saves the original handlers so
        ``unregister()`` can restore them.
        """
        self._original_sigint = signal.signal(signal.SIGINT, self._handle_signal)
        self._original_sigterm = signal.signal(signal.SIGTERM, self._handle_signal)

    def unregister(self) -> None:
        """Restore the signal handlers saved by ``register()``."""
        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)
            self._original_sigint = None

        if self._original_sigterm is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm)
            self._original_sigterm = None

    def trigger(self) -> None:
        """Request an abort without a signal (first stage only)."""
        self._event.set()

    def _handle_signal(self, signum: int, frame: object) -> None:
        """
        Signal handler implementing the two-stage model.

        Args:
            signum: Signal number (SIGINT=2, SIGTERM=15).
            frame: Current stack frame (unused).
        """
        if self._event.is_set():
            self._write_to_stderr("\n[Force exiting...]\n")
            raise SystemExit(130)

        self._write_to_stderr("\n[Interrupt received. Waiting for running tasks to finish...]\n")
        self.trigger()

    @staticmethod
    def _write_to_stderr(message: str) -> None:
        """Write directly to stderr; safe to call from a signal handler."""
        sys.stderr.write(message)
        sys.stderr.flush()
