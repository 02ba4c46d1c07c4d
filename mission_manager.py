# mission_manager.py
"""
Mission lifecycle for the operator console.

The manager owns the editable mission (ordered waypoints) and the mission
log. States: EMPTY -> DRAFT (add) -> SENT (send); clear returns to EMPTY from
any state. Sending hands a serialized copy of the waypoints to the store and
does not wait for the write. Status changes reported back by the vehicle on
the missions collection are recorded as new log entries.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from config import MISSIONS_LIMIT, MISSIONS_PATH
from store_adapter import StoreAdapter

logger = logging.getLogger("USVConsole.Mission")

# (level, message) -> None; levels: "success", "info"
Notifier = Callable[[str, str], None]


class MissionState(Enum):
    EMPTY = "empty"
    DRAFT = "draft"
    SENT = "sent"


@dataclass(frozen=True)
class Waypoint:
    x: float
    y: float
    seq: int

    def to_record(self) -> Dict[str, Any]:
        return {"lat": self.x, "lon": self.y, "seq": self.seq}


@dataclass(frozen=True)
class Mission:
    waypoints: Tuple[Waypoint, ...] = ()
    status: MissionState = MissionState.EMPTY

    def with_waypoint(self, x: float, y: float) -> "Mission":
        wp = Waypoint(x=x, y=y, seq=len(self.waypoints))
        return Mission(waypoints=self.waypoints + (wp,), status=MissionState.DRAFT)

    def to_record(self, created_at: Optional[datetime] = None) -> Dict[str, Any]:
        created_at = created_at or datetime.now(timezone.utc)
        return {
            "waypoints": [wp.to_record() for wp in self.waypoints],
            "status": "pending",
            "created_at": created_at.isoformat(),
        }


@dataclass(frozen=True)
class MissionLogEntry:
    id: str
    timestamp: str
    mission: Mission
    waypoint_count: int
    status: str
    message: str
    mission_key: Optional[str] = None


def format_log_time(dt: datetime) -> str:
    """e.g. 'Oct 19, 2026, 03:04:05 PM' in local time"""
    local = dt.astimezone()
    return f"{local.strftime('%b')} {local.day}, {local.strftime('%Y, %I:%M:%S %p')}"


def _plural(n: int) -> str:
    return f"{n} waypoint{'s' if n != 1 else ''}"


STATUS_MESSAGES = {
    "acknowledged": "USV acknowledged the mission ({count}).",
    "active": "USV is executing the mission ({count}).",
    "completed": "USV completed the mission ({count}).",
    "rejected": "USV rejected the mission ({count}).",
    "failed": "Mission failed on the USV ({count}).",
}

# No further updates are expected once a mission reaches one of these
TERMINAL_STATUSES = frozenset({"completed", "rejected", "failed"})


def _log_notification(level: str, message: str) -> None:
    logger.info(f"🔔 [{level}] {message}")


@dataclass
class _SentMission:
    mission: Mission
    status: str = "pending"


class MissionLifecycleManager:
    """Single writer of the mission and the mission log"""

    def __init__(
        self,
        store: StoreAdapter,
        notify: Optional[Notifier] = None,
        missions_path: str = MISSIONS_PATH,
        max_tracked: int = MISSIONS_LIMIT,
    ):
        self.store = store
        self.notify = notify or _log_notification
        self.missions_path = missions_path
        self.max_tracked = max_tracked
        self._mission = Mission()
        self._log: List[MissionLogEntry] = []
        self._sent: Dict[str, _SentMission] = {}
        self._last_entry_id = 0

    # ------------- Accessors -------------

    @property
    def mission(self) -> Mission:
        return self._mission

    @property
    def state(self) -> MissionState:
        return self._mission.status

    @property
    def log(self) -> Tuple[MissionLogEntry, ...]:
        return tuple(self._log)

    @property
    def tracked_keys(self) -> Tuple[str, ...]:
        """Keys of sent missions still awaiting status updates"""
        return tuple(self._sent)

    # ------------- Commands -------------

    def add_waypoint(self, x: float, y: float) -> Waypoint:
        # Notification number is read from the mission as it was before the update
        displayed = len(self._mission.waypoints) + 1
        self._mission = self._mission.with_waypoint(x, y)
        self.notify("success", f"Waypoint {displayed} added")
        return self._mission.waypoints[-1]

    def clear_waypoints(self) -> None:
        self._mission = Mission()
        self.notify("info", "Waypoints cleared")

    def send_mission(self) -> Optional[MissionLogEntry]:
        """
        Upload the current waypoints to the missions collection.
        Returns the new log entry, or None when there is nothing to send.
        """
        count = len(self._mission.waypoints)
        if count == 0:
            return None

        now = datetime.now(timezone.utc)
        mission = self._mission
        key = self.store.create(self.missions_path, mission.to_record(now))
        self._sent[key] = _SentMission(mission=mission)
        while len(self._sent) > self.max_tracked:
            self._sent.pop(next(iter(self._sent)))

        entry = self._append_entry(
            now,
            mission,
            status="Pending",
            message=f"Mission uploaded. Waiting for USV acknowledgement ({_plural(count)}).",
            mission_key=key,
        )
        self._mission = Mission(waypoints=mission.waypoints, status=MissionState.SENT)

        logger.info(f"📤 Mission {key} sent ({_plural(count)})")
        self.notify("success", f"{count} waypoints sent to USV")
        return entry

    # ------------- Acknowledgements -------------

    def apply_status_updates(self, batch: Optional[Mapping[str, Any]]) -> List[MissionLogEntry]:
        """
        Record status changes of missions sent from this console.
        Each change prepends a new log entry; existing entries are left as they are.
        """
        added: List[MissionLogEntry] = []
        if not batch:
            return added

        for key, record in batch.items():
            sent = self._sent.get(key)
            if sent is None or not isinstance(record, Mapping):
                continue
            status = str(record.get("status") or "").strip().lower()
            if not status or status == sent.status:
                continue

            sent.status = status
            count = len(sent.mission.waypoints)
            template = STATUS_MESSAGES.get(status)
            if template:
                message = template.format(count=_plural(count))
            else:
                message = f"Mission status changed to {status} ({_plural(count)})."
            entry = self._append_entry(
                datetime.now(timezone.utc),
                sent.mission,
                status=status.capitalize(),
                message=message,
                mission_key=key,
            )
            logger.info(f"📥 Mission {key} status: {status}")
            added.append(entry)
            if status in TERMINAL_STATUSES:
                del self._sent[key]
        return added

    def _append_entry(
        self,
        now: datetime,
        mission: Mission,
        status: str,
        message: str,
        mission_key: Optional[str],
    ) -> MissionLogEntry:
        entry_id = max(int(time.time() * 1000), self._last_entry_id + 1)
        self._last_entry_id = entry_id
        entry = MissionLogEntry(
            id=str(entry_id),
            timestamp=format_log_time(now),
            mission=mission,
            waypoint_count=len(mission.waypoints),
            status=status,
            message=message,
            mission_key=mission_key,
        )
        self._log.insert(0, entry)
        return entry
