from __future__ import annotations

from statemachine import State, StateMachine

from geopuzzle.api.models import SessionPhase, SessionState


class SessionFSM(StateMachine):
    """FSM wrapper around SessionState.

    Guards lifecycle transitions only:
    not_started -> running <-> paused, running -> complete, and reset from anywhere.
    Scoring and hints are applied by `geopuzzle.core.session.Session`.
    """

    not_started = State(SessionPhase.not_started.value, value=SessionPhase.not_started.value, initial=True)
    running = State(SessionPhase.running.value, value=SessionPhase.running.value)
    paused = State(SessionPhase.paused.value, value=SessionPhase.paused.value)
    complete = State(SessionPhase.complete.value, value=SessionPhase.complete.value)

    start = not_started.to(running)
    pause = running.to(paused)
    resume = paused.to(running)
    finish = running.to(complete)
    reset = not_started.to.itself() | running.to(not_started) | paused.to(not_started) | complete.to(not_started)

    def __init__(self, session: SessionState):
        self.session = session
        super().__init__(start_value=session.phase.value)

    def sync_phase_to_model(self) -> None:
        self.session.phase = SessionPhase(str(self.current_state.value))
