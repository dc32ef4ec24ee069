class FleetError(Exception):
    """Base class for errors surfaced to callers of the fleet core."""


class NotFoundError(FleetError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class InvalidTransitionError(FleetError):
    def __init__(self, trip_id: str, current: str, target: str, detail: str = ""):
        self.trip_id = trip_id
        self.current = current
        self.target = target
        msg = f"trip {trip_id}: {current} -> {target} not allowed"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class NotReplayableError(FleetError):
    def __init__(self, trip_id: str, state: str):
        self.trip_id = trip_id
        self.state = state
        super().__init__(f"trip {trip_id} is {state}; only COMPLETED trips can be replayed")


class VehicleBusyError(FleetError):
    def __init__(self, vehicle_id: str, trip_id: str):
        self.vehicle_id = vehicle_id
        self.trip_id = trip_id
        super().__init__(f"vehicle {vehicle_id} is on active trip {trip_id}")


class TransmissionError(FleetError):
    """A sample or heartbeat could not be delivered to the backend."""


class PositionUnavailable(FleetError):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    TRANSIENT = "TRANSIENT"

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(f"{reason}: {detail}" if detail else reason)
