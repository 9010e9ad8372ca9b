"""
Gesture session coordinator.

One consumer task owns the session state and handles everything posted to
its inbox: decoded detector events, connection changes, UI intents, and
the results of the background work it starts (camera permission requests,
action runs, timers). Background results carry the token that was current
when the work started; a result whose token is stale is ignored.

Session flow::

    LISTENING_FOR_TRIGGER --snap--> TRIGGER_DETECTED --permission--> ARMING_CAMERA
        --arm timer--> DETECTING_GESTURE --gesture--> [GESTURE_DETECTED_PENDING]
        --> RUNNING_ACTIONS --> ACTIONS_SUCCEEDED | ACTIONS_FAILED
        --reset timer / window closed--> RESETTING --resume timer--> LISTENING_FOR_TRIGGER
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Set

from .codec import decode_event, encode_command
from .config import SessionConfig
from .runner import ActionRunner
from .transport import Broadcast, Subscription
from .types import (
    AudioDetected,
    CameraProto,
    Connected,
    ConnectionState,
    Disconnected,
    DomainEvent,
    ExecutionSummary,
    GestureCommand,
    GestureDetected,
    GestureLost,
    GestureType,
    HandCount,
    SettingsProto,
    TransportProto,
)

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    LISTENING_FOR_TRIGGER = "listening_for_trigger"
    TRIGGER_DETECTED = "trigger_detected"
    ARMING_CAMERA = "arming_camera"
    DETECTING_GESTURE = "detecting_gesture"
    GESTURE_DETECTED_PENDING = "gesture_detected_pending"
    RUNNING_ACTIONS = "running_actions"
    ACTIONS_SUCCEEDED = "actions_succeeded"
    ACTIONS_FAILED = "actions_failed"
    RESETTING = "resetting"


@dataclass(frozen=True)
class ErrorDescriptor:
    """Comparable description of the error that ended a session."""
    kind: str
    message: str

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorDescriptor":
        return cls(kind=type(error).__name__, message=str(error))


@dataclass(frozen=True)
class SessionState:
    phase: SessionPhase
    error: Optional[ErrorDescriptor] = None

    @classmethod
    def failed(cls, error: BaseException) -> "SessionState":
        return cls(SessionPhase.ACTIONS_FAILED, ErrorDescriptor.from_exception(error))


# ---- inbox messages ---------------------------------------------------

@dataclass(frozen=True)
class _WindowClosed:
    pass


@dataclass(frozen=True)
class _Calibration:
    active: bool


@dataclass(frozen=True)
class _PermissionResolved:
    granted: bool
    token: int


@dataclass(frozen=True)
class _ActionsFinished:
    gesture: GestureType
    summary: Optional[ExecutionSummary]
    error: Optional[BaseException]
    token: int


class _TimerKind(str, Enum):
    ARM = "arm"
    HOLD = "hold"
    RESET = "reset"
    RESUME = "resume"


@dataclass(frozen=True)
class _TimerFired:
    kind: _TimerKind
    token: int


class GestureSessionCoordinator:
    """
    Drives one gesture session at a time.

    Args:
        transport: Detector connection (``messages``/``connection_states`` streams)
        camera: Camera owner; started while arming, stopped on reset
        runner: Executes the action list of the detected gesture
        settings: Source of per-gesture action lists
        config: Trigger, target gestures and session timings
    """

    def __init__(self, transport: TransportProto, camera: CameraProto, runner: ActionRunner,
                 settings: SettingsProto, config: SessionConfig):
        self.transport = transport
        self.camera = camera
        self.runner = runner
        self.settings = settings
        self.config = config

        self.state_changes: Broadcast[SessionState] = Broadcast()
        self.visibility_changes: Broadcast[bool] = Broadcast()

        self._state = SessionState(SessionPhase.LISTENING_FOR_TRIGGER)
        self._camera_visible = False
        self._hand_count = 0

        self._inbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._pumps: List[asyncio.Task] = []
        self._subscriptions: List[Subscription] = []
        self._background: Set[asyncio.Task] = set()

        self._timer: Optional[asyncio.Task] = None
        self._timer_token = 0
        self._permission_token = 0
        self._permission_pending = False
        self._run_token = 0
        self._run_in_flight = False
        self._run_task: Optional[asyncio.Task] = None

        self._calibrating = False
        self._gesture_enabled = False
        self._pending_gesture: Optional[GestureType] = None

    # ---- read-only state ----------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def camera_visible(self) -> bool:
        return self._camera_visible

    @property
    def hand_count(self) -> int:
        return self._hand_count

    @property
    def calibrating(self) -> bool:
        return self._calibrating

    # ---- lifecycle ----------------------------------------------------

    async def start(self) -> None:
        """Follow the transport streams, start the consumer, then connect."""
        if self._consumer is not None:
            return

        messages = self.transport.messages.subscribe()
        states = self.transport.connection_states.subscribe()
        self._subscriptions = [messages, states]

        self._consumer = asyncio.create_task(self._consume())
        self._pumps = [
            asyncio.create_task(self._pump_messages(messages)),
            asyncio.create_task(self._pump_connection_states(states)),
        ]
        logger.info("🚀 Gesture session coordinator started")
        await self.transport.connect()

    async def stop(self) -> None:
        """Stop pumps, timers and the camera, then disconnect the transport."""
        logger.info("🛑 Stopping gesture session coordinator")
        self._cancel_timer()

        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []

        tasks = list(self._pumps)
        if self._consumer is not None:
            tasks.append(self._consumer)
        tasks.extend(task for task in self._background if task is not self._run_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pumps = []
        self._consumer = None

        if self._run_task is not None and not self._run_task.done():
            logger.info("Waiting for running actions to finish...")
            await asyncio.gather(self._run_task, return_exceptions=True)

        self.camera.stop_camera()
        self._set_visible(False)
        await self.transport.disconnect()

    async def join(self) -> None:
        """Wait until every message posted so far has been handled."""
        await self._inbox.join()

    # ---- inputs -------------------------------------------------------

    def dispatch(self, event: DomainEvent) -> None:
        self._inbox.put_nowait(event)

    def window_closed(self) -> None:
        """The user dismissed the session window."""
        # Release the camera before the close is handled
        self._cancel_timer()
        self.camera.stop_camera()
        self._inbox.put_nowait(_WindowClosed())

    def begin_calibration(self) -> None:
        self._inbox.put_nowait(_Calibration(True))

    def end_calibration(self) -> None:
        self._inbox.put_nowait(_Calibration(False))

    # ---- pumps --------------------------------------------------------

    async def _pump_messages(self, messages: Subscription) -> None:
        async for raw in messages:
            event = decode_event(raw)
            if event is not None:
                self.dispatch(event)

    async def _pump_connection_states(self, states: Subscription) -> None:
        async for state in states:
            if state is ConnectionState.CONNECTED:
                self.dispatch(Connected())
            elif state is ConnectionState.DISCONNECTED:
                self.dispatch(Disconnected())

    # ---- consumer -----------------------------------------------------

    async def _consume(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                await self._handle(message)
            except Exception:
                logger.exception(f"Error while handling {message!r}")
            finally:
                self._inbox.task_done()

    async def _handle(self, message: Any) -> None:
        if isinstance(message, Connected):
            await self._on_connected()
        elif isinstance(message, Disconnected):
            self._on_disconnected()
        elif isinstance(message, AudioDetected):
            await self._on_audio(message)
        elif isinstance(message, GestureDetected):
            await self._on_gesture_detected(message)
        elif isinstance(message, GestureLost):
            self._on_gesture_lost(message)
        elif isinstance(message, HandCount):
            self._hand_count = message.count
        elif isinstance(message, _PermissionResolved):
            await self._on_permission_resolved(message)
        elif isinstance(message, _TimerFired):
            await self._on_timer(message)
        elif isinstance(message, _ActionsFinished):
            self._on_actions_finished(message)
        elif isinstance(message, _WindowClosed):
            self._on_window_closed()
        elif isinstance(message, _Calibration):
            await self._on_calibration(message.active)
        else:
            logger.warning(f"Ignoring unexpected message {message!r}")

    # ---- transitions --------------------------------------------------

    async def _on_connected(self) -> None:
        logger.info("Detector connected; listening for trigger")
        self._cancel_timer()
        self._permission_token += 1
        self.camera.stop_camera()
        self._set_visible(False)
        self._gesture_enabled = False
        self._pending_gesture = None
        self._set_phase(SessionPhase.LISTENING_FOR_TRIGGER)
        await self._send(GestureCommand.ENABLE_SNAP)

    def _on_disconnected(self) -> None:
        self._cancel_timer()
        self._permission_token += 1
        self.camera.stop_camera()
        self._set_visible(False)
        self._gesture_enabled = False
        self._pending_gesture = None
        self._set_phase(SessionPhase.LISTENING_FOR_TRIGGER)

    async def _on_audio(self, event: AudioDetected) -> None:
        if event.audio is not self.config.trigger:
            logger.debug(f"Ignoring non-trigger audio {event.audio.value}")
            return
        phase = self._state.phase
        if phase is not SessionPhase.LISTENING_FOR_TRIGGER:
            logger.info(f"Ignoring trigger while {phase.value}")
            return
        if self._calibrating:
            logger.info("Ignoring trigger while calibrating")
            return
        if self._permission_pending:
            logger.info("Ignoring trigger; camera permission request outstanding")
            return
        if self._run_in_flight:
            logger.info("Ignoring trigger; previous actions still running")
            return

        logger.info(f"👏 Trigger detected ({event.audio.value})")
        self._set_phase(SessionPhase.TRIGGER_DETECTED)
        await self._send(GestureCommand.DISABLE_SNAP)

        self._permission_token += 1
        self._permission_pending = True
        self._spawn(self._request_permission(self._permission_token))

    async def _on_permission_resolved(self, message: _PermissionResolved) -> None:
        self._permission_pending = False
        if message.token != self._permission_token or self._state.phase is not SessionPhase.TRIGGER_DETECTED:
            logger.debug("Ignoring stale camera permission result")
            return

        if not message.granted:
            logger.warning("❌ Camera permission denied")
            self._set_phase(SessionPhase.LISTENING_FOR_TRIGGER)
            await self._send(GestureCommand.ENABLE_SNAP)
            return

        self._set_phase(SessionPhase.ARMING_CAMERA)
        self.camera.start_camera()
        self._schedule(_TimerKind.ARM, self.config.camera_arm_delay_s)

    async def _on_gesture_detected(self, event: GestureDetected) -> None:
        phase = self._state.phase
        if phase not in (SessionPhase.DETECTING_GESTURE, SessionPhase.GESTURE_DETECTED_PENDING):
            logger.debug(f"Ignoring {event.gesture.value} while {phase.value}")
            return
        if event.gesture not in self.config.target_gestures:
            logger.debug(f"Ignoring non-target gesture {event.gesture.value}")
            return
        if phase is SessionPhase.GESTURE_DETECTED_PENDING:
            return

        logger.info(f"✋ Gesture detected: {event.gesture.value}")
        if self.config.hold_to_confirm_s > 0:
            self._pending_gesture = event.gesture
            self._set_phase(SessionPhase.GESTURE_DETECTED_PENDING)
            self._schedule(_TimerKind.HOLD, self.config.hold_to_confirm_s)
            return

        await self._start_actions(event.gesture)

    def _on_gesture_lost(self, event: GestureLost) -> None:
        if self._state.phase is not SessionPhase.GESTURE_DETECTED_PENDING:
            return
        if event.gesture is not self._pending_gesture:
            return
        logger.info(f"Gesture lost before confirmation: {event.gesture.value}")
        self._cancel_timer()
        self._pending_gesture = None
        self._set_phase(SessionPhase.DETECTING_GESTURE)

    async def _start_actions(self, gesture: GestureType) -> None:
        self._pending_gesture = None
        self._set_phase(SessionPhase.RUNNING_ACTIONS)
        await self._send(GestureCommand.DISABLE_GESTURE)
        self._gesture_enabled = False

        actions = self.settings.gesture_actions(gesture)
        if not actions:
            logger.warning(f"No actions configured for {gesture.value}")

        self._run_token += 1
        self._run_in_flight = True
        self._run_task = self._spawn(self._run_actions(gesture, actions, self._run_token))

    def _on_actions_finished(self, message: _ActionsFinished) -> None:
        self._run_in_flight = False
        if message.token != self._run_token or self._state.phase is not SessionPhase.RUNNING_ACTIONS:
            logger.info(f"Dropping results for {message.gesture.value}; session already moved on")
            return

        if message.error is not None:
            logger.error(f"❌ Action runner failed: {message.error!r}")
            self._set_state(SessionState.failed(message.error))
            return

        critical = message.summary.critical_failure
        if critical is not None:
            logger.error(f"❌ Commit failed: {critical.error}")
            self._set_state(SessionState.failed(critical.error))
            return

        logger.info(f"✅ {message.summary.summary_message}")
        self._set_phase(SessionPhase.ACTIONS_SUCCEEDED)
        self._schedule(_TimerKind.RESET, self.config.reset_delay_s)

    def _on_window_closed(self) -> None:
        if self._state.phase is SessionPhase.LISTENING_FOR_TRIGGER:
            return
        logger.info("Session window closed")
        self._permission_token += 1
        self._pending_gesture = None
        self._begin_reset(self.config.window_close_resume_delay_s)

    async def _on_calibration(self, active: bool) -> None:
        self._calibrating = active
        if active:
            logger.info("🎚️  Calibrating trigger")
            await self._send(GestureCommand.CALIBRATE_SNAP)
        else:
            logger.info("Calibration finished")

    async def _on_timer(self, message: _TimerFired) -> None:
        if message.token != self._timer_token:
            return
        self._timer = None
        phase = self._state.phase

        if message.kind is _TimerKind.ARM and phase is SessionPhase.ARMING_CAMERA:
            self._set_phase(SessionPhase.DETECTING_GESTURE)
            await self._send(GestureCommand.ENABLE_GESTURE)
            self._gesture_enabled = True
            self._set_visible(True)
        elif message.kind is _TimerKind.HOLD and phase is SessionPhase.GESTURE_DETECTED_PENDING:
            await self._start_actions(self._pending_gesture)
        elif message.kind is _TimerKind.RESET and phase in (SessionPhase.ACTIONS_SUCCEEDED,
                                                            SessionPhase.ACTIONS_FAILED):
            self.camera.stop_camera()
            self._begin_reset(self.config.resume_delay_s)
        elif message.kind is _TimerKind.RESUME and phase is SessionPhase.RESETTING:
            if self._gesture_enabled:
                await self._send(GestureCommand.DISABLE_GESTURE)
                self._gesture_enabled = False
            await self._send(GestureCommand.ENABLE_SNAP)
            self._set_phase(SessionPhase.LISTENING_FOR_TRIGGER)
            logger.info("👂 Listening for trigger")
        else:
            logger.debug(f"Ignoring {message.kind.value} timer while {phase.value}")

    def _begin_reset(self, resume_delay: float) -> None:
        self._set_phase(SessionPhase.RESETTING)
        self._set_visible(False)
        self._schedule(_TimerKind.RESUME, resume_delay)

    # ---- background work ----------------------------------------------

    async def _request_permission(self, token: int) -> None:
        try:
            granted = await self.camera.request_permission()
        except Exception as e:
            logger.error(f"Camera permission request failed: {e!r}")
            granted = False
        self._inbox.put_nowait(_PermissionResolved(granted, token))

    async def _run_actions(self, gesture: GestureType, actions, token: int) -> None:
        summary = None
        error = None
        try:
            summary = await self.runner.run(actions)
        except Exception as e:
            error = e
        self._inbox.put_nowait(_ActionsFinished(gesture, summary, error, token))

    async def _fire_after(self, kind: _TimerKind, delay: float, token: int) -> None:
        await asyncio.sleep(delay)
        self._inbox.put_nowait(_TimerFired(kind, token))

    def _schedule(self, kind: _TimerKind, delay: float) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._fire_after(kind, delay, self._timer_token))

    def _cancel_timer(self) -> None:
        self._timer_token += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ---- outputs ------------------------------------------------------

    async def _send(self, command: GestureCommand) -> None:
        sent = await self.transport.send(encode_command(command))
        if not sent:
            logger.warning(f"Command {command.value} was not delivered")

    def _set_phase(self, phase: SessionPhase) -> None:
        self._set_state(SessionState(phase))

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Session: {self._state.phase.value} -> {state.phase.value}")
        self._state = state
        self.state_changes.publish(state)

    def _set_visible(self, visible: bool) -> None:
        if visible == self._camera_visible:
            return
        self._camera_visible = visible
        self.visibility_changes.publish(visible)
