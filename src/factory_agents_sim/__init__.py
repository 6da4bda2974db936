"""Factory Agents Simulator - machine fleet telemetry with autonomous recovery agents."""

__version__ = "0.1.0"

from .config import Config
from .models import AgentType, LogKind, MachineStatus
from .simulator import Simulator
from .state import SimulationState

__all__ = [
    "Simulator",
    "SimulationState",
    "Config",
    "AgentType",
    "LogKind",
    "MachineStatus",
    "__version__",
]
