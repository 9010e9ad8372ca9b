"""
Test cases for the gesture session state machine.
"""
import asyncio
import json
import sys
import unittest
from pathlib import Path
from typing import List, Optional

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from snapcommit.camera import HeadlessCamera
from snapcommit.config import SessionConfig
from snapcommit.coordinator import ErrorDescriptor, GestureSessionCoordinator, SessionPhase, SessionState
from snapcommit.errors import CommitNetworkError
from snapcommit.runner import ActionRunner
from snapcommit.settings import SettingsStore
from snapcommit.transport import Broadcast
from snapcommit.types import (
    ActionType,
    AudioDetected,
    AudioType,
    CommitSuccess,
    ConnectionState,
    ExecutionSummary,
    GestureAction,
    GestureDetected,
    GestureLost,
    GestureType,
    HandCount,
    ShellResult,
)


class FakeTransport:
    """Records outbound commands; connect/disconnect publish state changes."""

    def __init__(self):
        self.messages = Broadcast()
        self.connection_states = Broadcast()
        self.commands: List[str] = []
        self.connected = False

    async def connect(self) -> None:
        if self.connected:
            return
        self.connected = True
        self.connection_states.publish(ConnectionState.CONNECTING)
        self.connection_states.publish(ConnectionState.CONNECTED)

    async def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            self.connection_states.publish(ConnectionState.DISCONNECTED)

    async def send(self, message: str) -> bool:
        self.commands.append(json.loads(message)["command"])
        return True


class FakeCommit:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.sent = 0
        self.stashed = 0

    async def send_commit_data(self) -> CommitSuccess:
        self.sent += 1
        if self.error is not None:
            raise self.error
        return CommitSuccess(repository_url="https://github.com/octo/repo", status="ok")

    async def stash_changes(self) -> None:
        self.stashed += 1


class FakeKeySender:
    async def is_trusted(self) -> bool:
        return True

    async def send(self, hotkey) -> None:
        pass


class FakeShell:
    def __init__(self, exit_code: int = 0):
        self.exit_code = exit_code
        self.commands: List[str] = []

    async def execute(self, command: str, cwd=None) -> ShellResult:
        self.commands.append(command)
        return ShellResult(stdout="", stderr="boom" if self.exit_code else "", exit_code=self.exit_code)


class ExplodingRunner:
    async def run(self, actions):
        raise RuntimeError("runner crashed")


class BlockingRunner:
    """Holds every run until `release` is set."""

    def __init__(self):
        self.release = asyncio.Event()
        self.calls = 0
        self.finished = False

    async def run(self, actions):
        self.calls += 1
        await self.release.wait()
        self.finished = True
        return ExecutionSummary()


class BlockingCamera(HeadlessCamera):
    """Camera whose permission prompt stays open until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        await self.release.wait()
        return self.grant_permission


def session_config(**overrides) -> SessionConfig:
    values = dict(
        trigger=AudioType.SNAP,
        target_gestures=[GestureType.HEART],
        hold_to_confirm_s=0.0,
        camera_arm_delay_s=0.01,
        reset_delay_s=0.05,
        resume_delay_s=0.02,
        window_close_resume_delay_s=0.01,
    )
    values.update(overrides)
    return SessionConfig(**values)


def command_action(command: str = "echo done") -> GestureAction:
    return GestureAction(action_type=ActionType.COMMAND, command_string=command)


class CoordinatorTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared wiring: fake transport, headless camera, real runner."""

    grant_permission = True

    async def asyncSetUp(self):
        self.transport = FakeTransport()
        self.camera = HeadlessCamera(grant_permission=self.grant_permission)
        self.commit = FakeCommit()
        self.shell = FakeShell()
        self.settings = SettingsStore()
        self.settings.save_gesture_actions(GestureType.HEART, [command_action()])

    async def start(self, runner=None, **config) -> GestureSessionCoordinator:
        runner = runner or ActionRunner(self.commit, FakeKeySender(), self.shell)
        coordinator = GestureSessionCoordinator(
            self.transport, self.camera, runner, self.settings, session_config(**config)
        )
        self.states = coordinator.state_changes.subscribe()
        self.addAsyncCleanup(coordinator.stop)
        await coordinator.start()
        await self.wait_for(lambda: self.transport.commands == ["enable_snap"])
        return coordinator

    async def wait_for(self, predicate, timeout: float = 2.0) -> None:
        async def poll():
            while not predicate():
                await asyncio.sleep(0.005)
        await asyncio.wait_for(poll(), timeout)

    async def wait_for_phase(self, coordinator, phase: SessionPhase) -> None:
        await self.wait_for(lambda: coordinator.state.phase is phase)

    async def arm(self, coordinator) -> None:
        coordinator.dispatch(AudioDetected(AudioType.SNAP))
        await self.wait_for_phase(coordinator, SessionPhase.DETECTING_GESTURE)

    def drained_phases(self) -> List[SessionPhase]:
        return [state.phase for state in self.states.drain()]


class TestHappyPath(CoordinatorTestCase):

    async def test_full_session_returns_to_listening(self):
        coordinator = await self.start()

        # Events arrive through the transport and are decoded by the pump
        self.transport.messages.publish('{"event":"audio","type":"snap"}')
        await self.wait_for_phase(coordinator, SessionPhase.DETECTING_GESTURE)
        self.assertTrue(coordinator.camera_visible)
        self.assertTrue(self.camera.is_running)

        self.transport.messages.publish('{"event":"gesture","type":"heart"}')
        await self.wait_for_phase(coordinator, SessionPhase.ACTIONS_SUCCEEDED)
        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)

        self.assertEqual(self.drained_phases(), [
            SessionPhase.TRIGGER_DETECTED,
            SessionPhase.ARMING_CAMERA,
            SessionPhase.DETECTING_GESTURE,
            SessionPhase.RUNNING_ACTIONS,
            SessionPhase.ACTIONS_SUCCEEDED,
            SessionPhase.RESETTING,
            SessionPhase.LISTENING_FOR_TRIGGER,
        ])
        self.assertEqual(self.transport.commands, [
            "enable_snap", "disable_snap", "enable_gesture", "disable_gesture", "enable_snap",
        ])
        self.assertEqual(self.shell.commands, ["echo done"])
        self.assertFalse(coordinator.camera_visible)
        self.assertEqual(self.camera.start_count, 1)
        self.assertEqual(self.camera.stop_count, 1)

    async def test_visibility_changes_are_published(self):
        coordinator = await self.start()
        visibility = coordinator.visibility_changes.subscribe()

        await self.arm(coordinator)
        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await self.wait_for_phase(coordinator, SessionPhase.ACTIONS_SUCCEEDED)
        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)

        self.assertEqual(await visibility.get(), True)
        self.assertEqual(await visibility.get(), False)

    async def test_no_configured_actions_still_succeeds(self):
        self.settings.save_gesture_actions(GestureType.HEART, [])
        coordinator = await self.start()

        await self.arm(coordinator)
        with self.assertLogs("snapcommit.coordinator", level="WARNING"):
            coordinator.dispatch(GestureDetected(GestureType.HEART))
            await self.wait_for_phase(coordinator, SessionPhase.ACTIONS_SUCCEEDED)

    async def test_non_commit_failure_still_resets(self):
        self.shell.exit_code = 1
        coordinator = await self.start()

        await self.arm(coordinator)
        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await self.wait_for_phase(coordinator, SessionPhase.ACTIONS_SUCCEEDED)
        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)


class TestCommitFailure(CoordinatorTestCase):

    async def test_commit_failure_waits_for_window_close(self):
        self.commit.error = CommitNetworkError("offline")
        self.settings.save_gesture_actions(GestureType.HEART, [
            GestureAction(action_type=ActionType.COMMIT),
            command_action(),
        ])
        coordinator = await self.start()

        await self.arm(coordinator)
        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await self.wait_for_phase(coordinator, SessionPhase.ACTIONS_FAILED)

        self.assertEqual(coordinator.state.error, ErrorDescriptor("CommitNetworkError", "offline"))
        # Later actions still ran
        self.assertEqual(self.shell.commands, ["echo done"])

        # Well past the reset delay: still waiting for the user
        await asyncio.sleep(0.15)
        self.assertIs(coordinator.state.phase, SessionPhase.ACTIONS_FAILED)

        coordinator.window_closed()
        self.assertFalse(self.camera.is_running)
        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertEqual(self.drained_phases()[-3:], [
            SessionPhase.ACTIONS_FAILED,
            SessionPhase.RESETTING,
            SessionPhase.LISTENING_FOR_TRIGGER,
        ])
        self.assertEqual(self.transport.commands[-1], "enable_snap")

    async def test_runner_exception_surfaces_as_failure(self):
        coordinator = await self.start(runner=ExplodingRunner())

        await self.arm(coordinator)
        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await self.wait_for_phase(coordinator, SessionPhase.ACTIONS_FAILED)

        self.assertEqual(coordinator.state, SessionState(
            SessionPhase.ACTIONS_FAILED, ErrorDescriptor("RuntimeError", "runner crashed")))


class TestGuards(CoordinatorTestCase):

    async def test_trigger_outside_listening_is_ignored(self):
        coordinator = await self.start()
        await self.arm(coordinator)

        coordinator.dispatch(AudioDetected(AudioType.SNAP))
        await coordinator.join()

        self.assertIs(coordinator.state.phase, SessionPhase.DETECTING_GESTURE)
        self.assertEqual(self.transport.commands.count("disable_snap"), 1)
        self.assertEqual(self.camera.permission_requests, 1)

    async def test_gesture_lost_outside_pending_is_ignored(self):
        coordinator = await self.start()
        await self.arm(coordinator)

        coordinator.dispatch(GestureLost(GestureType.HEART))
        await coordinator.join()

        self.assertIs(coordinator.state.phase, SessionPhase.DETECTING_GESTURE)

    async def test_gesture_while_listening_is_ignored(self):
        coordinator = await self.start()

        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await coordinator.join()

        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertEqual(self.transport.commands, ["enable_snap"])

    async def test_non_target_gesture_is_ignored(self):
        coordinator = await self.start()
        await self.arm(coordinator)

        coordinator.dispatch(GestureDetected(GestureType.PEACE))
        await coordinator.join()

        self.assertIs(coordinator.state.phase, SessionPhase.DETECTING_GESTURE)

    async def test_hand_count_only_updates_count(self):
        coordinator = await self.start()

        coordinator.dispatch(HandCount(2))
        await coordinator.join()

        self.assertEqual(coordinator.hand_count, 2)
        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)

    async def test_trigger_ignored_while_calibrating(self):
        coordinator = await self.start()

        coordinator.begin_calibration()
        coordinator.dispatch(AudioDetected(AudioType.SNAP))
        await coordinator.join()

        self.assertEqual(self.transport.commands, ["enable_snap", "calibrate_snap"])
        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)

        coordinator.end_calibration()
        await self.arm(coordinator)


class TestOutstandingWork(CoordinatorTestCase):

    async def test_no_new_session_while_actions_still_run(self):
        runner = BlockingRunner()
        coordinator = await self.start(runner=runner)
        await self.arm(coordinator)

        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await self.wait_for(lambda: runner.calls == 1)
        self.assertIs(coordinator.state.phase, SessionPhase.RUNNING_ACTIONS)

        coordinator.window_closed()
        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)

        coordinator.dispatch(AudioDetected(AudioType.SNAP))
        await coordinator.join()
        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertEqual(self.camera.permission_requests, 1)

        with self.assertLogs("snapcommit.coordinator", level="INFO") as logs:
            runner.release.set()
            await self.wait_for(lambda: runner.finished)
            await coordinator.join()
        self.assertTrue(any("Dropping results" in line for line in logs.output))
        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)

        # The finished run no longer blocks the trigger
        await self.arm(coordinator)
        self.assertEqual(self.camera.permission_requests, 2)

    async def test_single_permission_request_at_a_time(self):
        self.camera = BlockingCamera()
        coordinator = await self.start()

        coordinator.dispatch(AudioDetected(AudioType.SNAP))
        await self.wait_for(lambda: self.camera.permission_requests == 1)
        self.assertIs(coordinator.state.phase, SessionPhase.TRIGGER_DETECTED)

        coordinator.window_closed()
        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)

        coordinator.dispatch(AudioDetected(AudioType.SNAP))
        await coordinator.join()
        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertEqual(self.camera.permission_requests, 1)

        # The late answer belongs to the closed session
        self.camera.release.set()
        await asyncio.sleep(0.02)
        await coordinator.join()
        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertFalse(self.camera.is_running)

        await self.arm(coordinator)
        self.assertEqual(self.camera.permission_requests, 2)


class TestPermissionDenied(CoordinatorTestCase):

    grant_permission = False

    async def test_denied_permission_returns_to_listening(self):
        coordinator = await self.start()

        coordinator.dispatch(AudioDetected(AudioType.SNAP))
        await self.wait_for(lambda: self.transport.commands.count("enable_snap") == 2)

        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertEqual(self.transport.commands, ["enable_snap", "disable_snap", "enable_snap"])
        self.assertFalse(self.camera.is_running)


class TestHoldToConfirm(CoordinatorTestCase):

    async def test_gesture_lost_cancels_confirmation(self):
        coordinator = await self.start(hold_to_confirm_s=0.2)
        await self.arm(coordinator)

        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await coordinator.join()
        self.assertIs(coordinator.state.phase, SessionPhase.GESTURE_DETECTED_PENDING)

        coordinator.dispatch(GestureLost(GestureType.HEART))
        await coordinator.join()
        self.assertIs(coordinator.state.phase, SessionPhase.DETECTING_GESTURE)

        await asyncio.sleep(0.3)
        self.assertIs(coordinator.state.phase, SessionPhase.DETECTING_GESTURE)
        self.assertEqual(self.shell.commands, [])

    async def test_held_gesture_runs_actions(self):
        coordinator = await self.start(hold_to_confirm_s=0.02)
        await self.arm(coordinator)

        coordinator.dispatch(GestureDetected(GestureType.HEART))
        await self.wait_for_phase(coordinator, SessionPhase.ACTIONS_SUCCEEDED)

        self.assertEqual(self.shell.commands, ["echo done"])


class TestWindowAndConnection(CoordinatorTestCase):

    async def test_window_closed_while_detecting(self):
        coordinator = await self.start()
        await self.arm(coordinator)

        coordinator.window_closed()
        # Camera is released before the close is handled
        self.assertFalse(self.camera.is_running)

        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertFalse(coordinator.camera_visible)
        self.assertEqual(self.transport.commands[-2:], ["disable_gesture", "enable_snap"])

    async def test_window_closed_while_listening_is_noop(self):
        coordinator = await self.start()

        coordinator.window_closed()
        await coordinator.join()

        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)
        self.assertEqual(self.drained_phases(), [])

    async def test_disconnect_returns_to_listening(self):
        coordinator = await self.start()
        await self.arm(coordinator)

        self.transport.connection_states.publish(ConnectionState.DISCONNECTED)
        await self.wait_for_phase(coordinator, SessionPhase.LISTENING_FOR_TRIGGER)

        self.assertFalse(coordinator.camera_visible)
        self.assertFalse(self.camera.is_running)

    async def test_reconnect_reenables_trigger(self):
        coordinator = await self.start()

        self.transport.connection_states.publish(ConnectionState.DISCONNECTED)
        self.transport.connection_states.publish(ConnectionState.CONNECTED)
        await self.wait_for(lambda: self.transport.commands == ["enable_snap", "enable_snap"])

        self.assertIs(coordinator.state.phase, SessionPhase.LISTENING_FOR_TRIGGER)


class TestSessionState(unittest.TestCase):

    def test_error_descriptor_equality(self):
        first = SessionState.failed(CommitNetworkError("offline"))
        second = SessionState.failed(CommitNetworkError("offline"))
        self.assertEqual(first, second)
        self.assertNotEqual(first, SessionState.failed(ValueError("offline")))


if __name__ == "__main__":
    unittest.main()
