"""Unified error codes and custom exceptions.

Error code ranges:
  3xxx: Room
  6xxx: Competition engine
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 3xxx: Room ---

class RoomNotFoundError(AppError):
    def __init__(self, room_id: str) -> None:
        super().__init__(3001, f"Room not found: {room_id}", 404)


class InvalidRoomStateError(AppError):
    def __init__(self, room_id: str, status: str, expected: str) -> None:
        super().__init__(
            3002,
            f"Room {room_id} is {status}, expected {expected}",
            422,
        )


class RoomFullError(AppError):
    def __init__(self, room_id: str) -> None:
        super().__init__(3003, f"Room is full: {room_id}", 422)


class RoomNotActiveError(AppError):
    def __init__(self, room_id: str, status: str) -> None:
        super().__init__(
            3005, f"Room {room_id} is not accepting orders (status={status})", 422
        )


class StaleRoomError(AppError):
    def __init__(self, room_id: str, version: int) -> None:
        super().__init__(
            3006, f"Room {room_id} was modified concurrently (version {version})", 409
        )


class InvalidRoomConfigError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3007, f"Invalid room configuration: {detail}", 422)


# --- 6xxx: Competition engine ---

class ComputationError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(6001, f"Computation error: {detail}", 500)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
