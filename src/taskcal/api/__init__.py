"""HTTP API for taskcal."""

from taskcal.api.server import CalendarServer, run_server

__all__ = ["CalendarServer", "run_server"]
