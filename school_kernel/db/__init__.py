"""school_kernel.db -- declarative base and engine/session management."""
