"""
Runs a gesture's ordered action list.

Actions run one at a time in list order. A failing action never stops the
rest of the list; every outcome lands in the ExecutionSummary.
"""
import logging
from typing import List

from .errors import AccessibilityPermissionDenied, CommandFailed, CommandNotConfigured, HotkeyNotConfigured
from .types import (
    MAX_ACTIONS_PER_GESTURE,
    ActionResult,
    ActionType,
    CommitProto,
    ExecutionSummary,
    GestureAction,
    KeySenderProto,
    ShellProto,
)

logger = logging.getLogger(__name__)


class ActionRunner:
    """Executes commit, shortcut and command actions."""

    def __init__(self, commit: CommitProto, key_sender: KeySenderProto, shell: ShellProto,
                 max_actions: int = MAX_ACTIONS_PER_GESTURE):
        self.commit = commit
        self.key_sender = key_sender
        self.shell = shell
        self.max_actions = max_actions

    async def run(self, actions: List[GestureAction]) -> ExecutionSummary:
        if len(actions) > self.max_actions:
            logger.warning(f"Running only the first {self.max_actions} of {len(actions)} actions")
            actions = actions[:self.max_actions]

        summary = ExecutionSummary()
        for index, action in enumerate(actions, start=1):
            logger.info(f"▶️  Action {index}/{len(actions)}: {action.action_type.value}")
            result = await self._run_one(action)
            if result.ok:
                logger.info(f"✅ Action {index} succeeded")
            else:
                logger.warning(f"❌ Action {index} failed: {result.error}")
            summary.results.append(result)

        logger.info(f"Actions finished: {summary.summary_message}")
        return summary

    async def _run_one(self, action: GestureAction) -> ActionResult:
        try:
            if action.action_type is ActionType.COMMIT:
                return await self._run_commit(action)
            if action.action_type is ActionType.SHORTCUT:
                return await self._run_shortcut(action)
            return await self._run_command(action)
        except Exception as e:
            # Keep going with the remaining actions
            logger.debug(f"Action {action.id} raised", exc_info=True)
            return ActionResult.failure(action, e)

    async def _run_commit(self, action: GestureAction) -> ActionResult:
        success = await self.commit.send_commit_data()
        await self.commit.stash_changes()
        return ActionResult.success(action, success)

    async def _run_shortcut(self, action: GestureAction) -> ActionResult:
        if not await self.key_sender.is_trusted():
            raise AccessibilityPermissionDenied()
        if action.hotkey is None:
            raise HotkeyNotConfigured()
        await self.key_sender.send(action.hotkey)
        return ActionResult.success(action)

    async def _run_command(self, action: GestureAction) -> ActionResult:
        command = (action.command_string or "").strip()
        if not command:
            raise CommandNotConfigured()

        result = await self.shell.execute(command)
        if not result.is_success:
            return ActionResult.failure(
                action,
                CommandFailed(result.exit_code, result.stdout, result.stderr),
                payload=result,
            )
        return ActionResult.success(action, result)
