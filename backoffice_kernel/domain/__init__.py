"""Pure domain helpers: time, security and response envelopes."""

from backoffice_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "DeterministicClock", "SystemClock"]
