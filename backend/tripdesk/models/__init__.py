from tripdesk.models.trip import Trip, TripActivity, TripClientAssignment, TripTransitLeg
from tripdesk.models.facts import FactsDirty, TripFacts
from tripdesk.models.search import SearchQuery, TripComponent

__all__ = [
    "FactsDirty",
    "SearchQuery",
    "Trip",
    "TripActivity",
    "TripClientAssignment",
    "TripComponent",
    "TripFacts",
    "TripTransitLeg",
]
