from fastapi import Request

from tripdesk.services.trip_tools import TripTools


def get_tools(request: Request) -> TripTools:
    """Engine facade built at startup and kept on the app state."""
    return request.app.state.tools
