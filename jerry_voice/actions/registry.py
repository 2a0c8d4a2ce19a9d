"""
Action registry - maps action types to their handlers
"""

from typing import Dict, List, Any, Optional
from loguru import logger

from jerry_voice.models import Action, ActionType
from .base import ActionResult, BaseAction

# Handler classes registered at import time; each registry instantiates its own
_default_actions: List[type] = []


def register_action(action_class):
    """Class decorator adding a handler to the default set"""
    _default_actions.append(action_class)
    return action_class


class ActionRegistry:
    """Registry for the actions one session manager can execute"""

    def __init__(self, actions: Optional[List[BaseAction]] = None):
        self._actions: Dict[ActionType, BaseAction] = {}
        for action in actions if actions is not None else [cls() for cls in _default_actions]:
            self.register(action)

    def register(self, action: BaseAction):
        self._actions[action.action_type] = action
        logger.debug(f"Registered action: {action.name}")

    def get(self, action_type: ActionType) -> Optional[BaseAction]:
        return self._actions.get(action_type)

    def names(self) -> List[str]:
        return [a.name for a in self._actions.values()]

    def get_definitions(self) -> List[Dict[str, Any]]:
        """All action definitions for Gemini function calling"""
        return [a.get_definition() for a in self._actions.values()]

    async def execute(self, ops, action: Action) -> ActionResult:
        """Execute one action; failures are logged and returned, never raised"""
        handler = self.get(action.type)
        if not handler:
            logger.error(f"Action not found: {action.type}")
            return ActionResult(success=False, message=f"Action '{action.type}' not found")

        try:
            result = await handler.execute(ops, action)
            logger.info(f"Action {handler.name}: {result.summary()}")
            return result
        except Exception as e:
            logger.error(f"Action execution error for {handler.name}: {type(e).__name__}: {e}")
            return ActionResult(success=False, message=f"Error executing action: {e}")
