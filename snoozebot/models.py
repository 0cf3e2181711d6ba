from dataclasses import dataclass
from enum import Enum
from typing import Optional

MODE_IDLE = "idle"
MODE_AWAITING_DESTINATION = "awaiting_destination"
MODE_CHOOSE_RADIUS = "choose_radius"
MODE_AWAITING_LIVE_LOCATION = "awaiting_live_location"


class TripState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    THRESHOLD_REACHED = "threshold_reached"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PositionSample:
    coordinate: Coordinate
    timestamp: float
    accuracy_m: Optional[float] = None


@dataclass
class Trip:
    trip_id: int = 0
    destination: Optional[Coordinate] = None
    initial_location: Optional[Coordinate] = None
    current_location: Optional[Coordinate] = None
    alarm_threshold_m: float = 500.0
    distance_m: float = 0.0
    progress: float = 0.0
    state: TripState = TripState.IDLE
    call_made: bool = False
    call_in_progress: bool = False
    call_failed: bool = False


@dataclass(frozen=True)
class TripSnapshot:
    user_id: int
    trip_id: int
    state: TripState
    progress: float
    distance_m: float
    call_made: bool
    call_in_progress: bool
    call_failed: bool
    threshold_m: float
    destination: Optional[Coordinate] = None

    @property
    def is_tracking(self) -> bool:
        return self.state in (TripState.ACTIVE, TripState.THRESHOLD_REACHED)


@dataclass
class TravelerSession:
    user_id: int
    chat_id: int
    mode: str = MODE_IDLE

    pending_destination: Optional[Coordinate] = None
    alarm_radius_m: Optional[float] = None

    last_interaction_ts: float = 0.0
    last_live_update_ts: float = 0.0
    live_period_until_ts: float = 0.0
    phone_registered: bool = False
    last_stale_notify_ts: float = 0.0

    last_rendered_state: Optional[str] = None
    last_rendered_call_made: bool = False

    @property
    def awaiting_destination(self) -> bool:
        return self.mode == MODE_AWAITING_DESTINATION
