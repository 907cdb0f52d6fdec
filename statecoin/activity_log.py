"""
Statecoin Wallet - Activity Log

Append-only log of all protocol actions taken by the wallet.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List


class Action(Enum):
    DEPOSIT = "D"
    TRANSFER = "T"
    WITHDRAW = "W"
    RECEIVE = "R"
    SWAP = "S"


@dataclass(frozen=True)
class ActivityLogItem:
    statecoin_id: str
    action: Action
    date: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict:
        return {"statecoin_id": self.statecoin_id, "action": self.action.value, "date": self.date}

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityLogItem":
        return cls(statecoin_id=data["statecoin_id"], action=Action(data["action"]), date=int(data["date"]))


class ActivityLog:
    def __init__(self):
        self._items: List[ActivityLogItem] = []

    def __len__(self) -> int:
        return len(self._items)

    def add_item(self, statecoin_id: str, action: Action) -> ActivityLogItem:
        item = ActivityLogItem(statecoin_id, action)
        self._items.append(item)
        return item

    def get_items(self, depth: int) -> List[ActivityLogItem]:
        """Most recent `depth` items, newest first."""
        ordered = sorted(enumerate(self._items), key=lambda p: (p[1].date, p[0]), reverse=True)
        return [item for _, item in ordered[:depth]]

    def to_dict(self) -> dict:
        return {"items": [item.to_dict() for item in self._items]}

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityLog":
        log = cls()
        log._items = [ActivityLogItem.from_dict(d) for d in data.get("items", [])]
        return log
