"""school_kernel.domain -- pure kernel primitives (clock)."""

from school_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "DeterministicClock", "SystemClock"]
