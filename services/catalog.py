from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class ActivityInfo:
    id: int
    name: str
    capacity_per_slot: int
    available_slots: Tuple[str, ...] = field(default_factory=tuple)

    def offers(self, time_slot: str) -> bool:
        return time_slot in self.available_slots


class ActivityCatalog(ABC):
    @abstractmethod
    def get_activity(self, activity_id) -> Optional[ActivityInfo]:
        """Return the activity, or None if unknown or inactive."""


class InMemoryActivityCatalog(ActivityCatalog):
    def __init__(self, activities=()):
        self._activities = {a.id: a for a in activities}

    def add(self, activity: ActivityInfo) -> ActivityInfo:
        self._activities[activity.id] = activity
        return activity

    def get_activity(self, activity_id):
        return self._activities.get(activity_id)
