STATUS_TO_HTTP = {
    "INVALID_ARGUMENT": 400,
    "UNAUTHENTICATED": 401,
    "NOT_FOUND": 404,
    "RESOURCE_EXHAUSTED": 429,
    "INTERNAL": 500,
}


class CallBackendError(Exception):
    """Callable-protocol error: rendered as ``{"error": {"status", "message"}}``."""

    def __init__(self, status: str, message: str) -> None:
        super().__init__(message)
        self.status = status if status in STATUS_TO_HTTP else "INTERNAL"
        self.message = message

    @property
    def http_status(self) -> int:
        return STATUS_TO_HTTP[self.status]

    def to_payload(self) -> dict:
        return {"error": {"status": self.status, "message": self.message}}
