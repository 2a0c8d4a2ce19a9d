"""
Call actions: side effects Jerry triggers on a session after a reply
(sending the JotForm, booking a Teams slot, ending the call, scoring an interview).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jerry_voice.models import Action, ActionType


@dataclass
class ActionResult:
    """Outcome of one action; success=False means skipped or failed, never raised"""
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None

    def summary(self) -> str:
        return f"{'OK' if self.success else 'SKIPPED'} - {self.message}"


class BaseAction(ABC):
    """Handler for one ActionType.

    Handlers only touch the session through the SessionOps facade passed to
    execute(), so the manager keeps ownership of flags, notes and persistence.
    """

    action_type: ActionType
    description: str = ""

    @property
    def name(self) -> str:
        return self.action_type.value

    @property
    def parameters(self) -> Dict[str, Any]:
        return {"type": "object", "properties": {}}

    @abstractmethod
    async def execute(self, ops, action: Action) -> ActionResult:
        ...

    def get_definition(self) -> Dict[str, Any]:
        """Function declaration sent to Gemini when function calling is enabled"""
        return {"name": self.name, "description": self.description or self.name, "parameters": self.parameters}
