"""Fleet layout: the factories of the simulated enterprise.

Each factory owns a fixed number of machines. Machine ids are derived from
the factory id (``F1-M1``, ``F1-M2``, ...) and never move between factories.

Factories:
- F1 Alpha Plant (Section A)
- F2 Beta Works (Section B)
- F3 Gamma Forge (Section C)
"""

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass
class FactoryConfig:
    """Configuration for a factory and the size of its machine park."""

    id: str
    name: str
    location: str
    machine_count: int = 3

    def machine_ids(self) -> List[str]:
        return [f"{self.id}-M{i + 1}" for i in range(self.machine_count)]

    def to_meta_dict(self) -> Dict[str, Any]:
        """Convert to a plain dict for YAML and snapshots."""
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "machine_count": self.machine_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FactoryConfig":
        return cls(
            id=str(data["id"]),
            name=data.get("name", data["id"]),
            location=data.get("location", ""),
            machine_count=int(data.get("machine_count", 3)),
        )


# =============================================================================
# Pre-configured Factories
# =============================================================================

FACTORY_ALPHA = FactoryConfig(id="F1", name="Alpha Plant", location="Section A")
FACTORY_BETA = FactoryConfig(id="F2", name="Beta Works", location="Section B")
FACTORY_GAMMA = FactoryConfig(id="F3", name="Gamma Forge", location="Section C")


def default_factories() -> List[FactoryConfig]:
    """Fresh copies of the default 3 x 3 fleet."""
    return [
        FactoryConfig(f.id, f.name, f.location, f.machine_count)
        for f in (FACTORY_ALPHA, FACTORY_BETA, FACTORY_GAMMA)
    ]
