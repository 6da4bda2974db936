"""Exceptions raised by the simulator core."""


class SimulationError(Exception):
    """Base class for simulator errors."""


class UnknownAgentError(SimulationError, KeyError):
    """Raised when an agent category is not registered."""


class NonFiniteReadingError(SimulationError, ValueError):
    """Raised when a sensor computation produces NaN or infinity."""


class ConfigError(SimulationError, ValueError):
    """Raised for invalid configuration values."""
