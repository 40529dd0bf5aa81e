"""
Exercise Catalog

Read-only exercise reference data, filtered by what the user can actually
use. The bundled catalog lives in data/exercise_catalog.yaml; deployments
may point EXERCISE_CATALOG_PATH at their own file with the same layout.

Usage:
    catalog = YamlExerciseCatalog.from_path()
    exercises = catalog.list_exercises(structure, blueprint.equipment_constraints, level)
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence

import yaml

from services.workout_composition.constants import (
    EQUIPMENT_BY_STRUCTURE,
    EquipmentType,
    LEVEL_RANK,
    TrainingLevel,
    TrainingStructure,
)
from services.workout_composition.models import CatalogExercise

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "exercise_catalog.yaml"


class ExerciseCatalog(Protocol):
    def list_exercises(
        self,
        structure: TrainingStructure,
        equipment_allowed: Sequence[EquipmentType],
        level: TrainingLevel,
    ) -> List[CatalogExercise]:
        ...


class InMemoryExerciseCatalog:
    """Catalog over a fixed list of exercises."""

    def __init__(self, exercises: Iterable[CatalogExercise]):
        self._exercises = list(exercises)

    def __len__(self) -> int:
        return len(self._exercises)

    def list_exercises(
        self,
        structure: TrainingStructure,
        equipment_allowed: Sequence[EquipmentType],
        level: TrainingLevel,
    ) -> List[CatalogExercise]:
        """
        Exercises usable for this structure and level.

        Equipment must be both allowed and permitted by the structure; an
        exercise's level is the minimum level it is suitable for.
        """
        permitted = EQUIPMENT_BY_STRUCTURE.get(structure, frozenset({EquipmentType.BODYWEIGHT}))
        allowed = set(equipment_allowed) & set(permitted)
        user_rank = LEVEL_RANK.get(level, LEVEL_RANK[TrainingLevel.INTERMEDIATE])
        return [
            e for e in self._exercises
            if e.equipment in allowed and LEVEL_RANK.get(e.level, 0) <= user_rank
        ]


class YamlExerciseCatalog(InMemoryExerciseCatalog):
    """Catalog loaded from a YAML file with an `exercises:` list."""

    @classmethod
    def from_path(cls, path: Optional[str] = None) -> "YamlExerciseCatalog":
        filepath = Path(path) if path else DEFAULT_CATALOG_PATH
        with open(filepath, "r") as f:
            data = yaml.safe_load(f) or {}

        exercises = []
        for raw in data.get("exercises", []):
            try:
                exercises.append(CatalogExercise.from_dict(raw))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping catalog entry {raw.get('name', '?')!r}: {e}")

        logger.info(f"Loaded {len(exercises)} catalog exercises from {filepath}")
        return cls(exercises)
