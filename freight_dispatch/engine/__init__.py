"""
Dispatch engine components.

- SequenceAllocator: atomic business identifiers
- DispatchStateMachine: status lifecycle
- MatchingEngine: truck/load matching and deadhead search
- QueryFilterBuilder: request parameters to list queries
"""

from .base import BaseComponent, EngineDecision
from .geo import EARTH_RADIUS_MILES, BoundingBox, bounding_box, haversine_miles
from .matching import MatchingEngine
from .query_filter import QueryFilterBuilder
from .sequences import SequenceAllocator, parse_sequence_name
from .state_machine import (
    TRANSITIONS,
    DispatchStateMachine,
    allowed_targets,
    can_transition,
    is_terminal,
    parse_status,
)

__all__ = [
    "BaseComponent",
    "BoundingBox",
    "DispatchStateMachine",
    "EARTH_RADIUS_MILES",
    "EngineDecision",
    "MatchingEngine",
    "QueryFilterBuilder",
    "SequenceAllocator",
    "TRANSITIONS",
    "allowed_targets",
    "bounding_box",
    "can_transition",
    "haversine_miles",
    "is_terminal",
    "parse_sequence_name",
    "parse_status",
]
