"""
Base class for engine components.

Provides common functionality:
- Store and configuration wiring
- Logging and decision tracking
"""

from collections import deque
from datetime import datetime
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from ..core.config import ConfigManager, get_config
from ..data.models import utcnow
from ..data.store import Store


class EngineDecision(BaseModel):
    """
    Structured record of a decision an engine component made.

    Kept so the outcome of a transition or a match run can be inspected later.
    """

    timestamp: datetime
    component_name: str
    decision_type: str
    input_data: dict[str, Any]
    output_data: dict[str, Any]
    execution_time_seconds: float


class BaseComponent:
    """
    Base class for the sequence allocator, state machine and matching engine.

    Provides:
    - Store access
    - Configuration loading
    - Decision logging
    """

    # Decisions kept in memory per component
    history_size = 100

    def __init__(
        self,
        component_name: str,
        store: Store,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the component.

        Args:
            component_name: Name of the component (e.g., "matching", "sequences")
            store: Persistence backend
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
        """
        self.component_name = component_name
        self.store = store
        self.config_manager = config_manager or get_config()
        self.logger = logger or structlog.get_logger(component=component_name)
        self.decision_history: deque[EngineDecision] = deque(maxlen=self.history_size)

    def log_decision(
        self,
        decision_type: str,
        input_data: dict[str, Any],
        output_data: dict[str, Any],
        started_at: float,
        finished_at: float,
    ) -> EngineDecision:
        """
        Record a decision and emit it as a structured log event.

        Args:
            decision_type: What was decided (e.g., "status_transition")
            input_data: Inputs that drove the decision
            output_data: The outcome
            started_at: perf_counter() value when work began
            finished_at: perf_counter() value when work ended
        """
        decision = EngineDecision(
            timestamp=utcnow(),
            component_name=self.component_name,
            decision_type=decision_type,
            input_data=input_data,
            output_data=output_data,
            execution_time_seconds=round(finished_at - started_at, 6),
        )
        self.decision_history.append(decision)
        self.logger.info(
            "engine_decision",
            decision_type=decision_type,
            execution_time=decision.execution_time_seconds,
            **output_data,
        )
        return decision

    def __repr__(self) -> str:
        """String representation of the component."""
        return f"{self.__class__.__name__}(component_name='{self.component_name}')"
