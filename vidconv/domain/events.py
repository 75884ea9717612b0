"""Domain events for the conversion pipeline.

Events flow through the EventBus, decoupling the orchestrator from the
WebSocket transport. Each event knows its wire name and payload shape.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from typing import Any, ClassVar, Dict
from pydantic import BaseModel, ConfigDict, Field


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: ClassVar[str] = "event"

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_message(self) -> Dict[str, Any]:
        return {"event": self.name, "data": self.payload()}


class ConversionEvent(Event):
    """Base class for events tied to one uploaded file."""

    file_name: str = Field(alias="fileName")


class ConversionProgress(ConversionEvent):
    """Emitted when the visible progress of a conversion changes."""

    name: ClassVar[str] = "conversion-progress"

    progress: int = Field(ge=0, le=100)
    output_name: str = Field(alias="outputName")
    completed: bool = False

    def payload(self) -> Dict[str, Any]:
        data = super().payload()
        if not self.completed:
            data.pop("completed")
        return data


class ConversionFailed(ConversionEvent):
    """Emitted once when a conversion fails or is cancelled."""

    name: ClassVar[str] = "conversion-error"

    error: str
