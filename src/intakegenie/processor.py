import asyncio
import logging
import time

from pydantic import BaseModel, Field, ValidationError, field_validator

from intakegenie.errors import LLMError
from intakegenie.llm import LLMClient
from intakegenie.prompts import build_messages
from intakegenie.session import CallSession
from intakegenie.state_machine import MAX_SILENT_TURNS, MAX_TURNS_PER_CALL, StateMachine, TurnResult
from intakegenie.states import ConversationState
from intakegenie.validation import detect_emergency

logger = logging.getLogger(__name__)

TURN_LLM_TIMEOUT = 4.0


class AgentReply(BaseModel):
    """The model's proposed turn. Anything that fails validation is treated as unparsable."""

    assistant_say: str = ""
    next_state: ConversationState
    updates: dict = Field(default_factory=dict)
    done: bool = False

    @field_validator("next_state", mode="before")
    @classmethod
    def _known_state(cls, value):
        state = ConversationState.parse(value)
        if state is None:
            raise ValueError(f"unknown state {value!r}")
        return state

    @field_validator("updates", mode="before")
    @classmethod
    def _updates_object(cls, value):
        return {} if value is None else value


class TurnProcessor:
    """Runs one conversational turn: caller utterance in, utterance to speak out.

    Suspends on exactly one model call, bounded by a timeout. Failures of
    that call never propagate: the caller hears the fallback line and the
    session stays where it was.
    """

    def __init__(
        self,
        llm: LLMClient,
        machine: StateMachine | None = None,
        synthesizer=None,
        timeout: float = TURN_LLM_TIMEOUT,
    ):
        self.llm = llm
        self.machine = machine or StateMachine()
        self.synthesizer = synthesizer
        self.timeout = timeout

    async def process_turn(self, session: CallSession, utterance: str | None) -> TurnResult:
        t_start = time.monotonic()
        text = (utterance or "").strip()
        result = await self._decide(session, text)
        session.add_turn("agent", result.say)
        session.touch()
        if self.synthesizer is not None:
            self.synthesizer.prefetch(session.call_id, len(session.history), result.say)
        logger.info(
            "[%s] turn %d -> %s done=%s (%.0fms)",
            session.call_id, session.turn_count, result.next_state.value, result.done,
            (time.monotonic() - t_start) * 1000,
        )
        return result

    async def _decide(self, session: CallSession, text: str) -> TurnResult:
        if session.state.is_terminal:
            # call should already be over; repeat the final script
            if session.state == ConversationState.EMERGENCY:
                return self.machine.emergency(session)
            return self.machine.close(session)

        if not text:
            if session.state == ConversationState.START:
                return self.machine.opening(session)
            session.silent_turns += 1
            if session.silent_turns >= MAX_SILENT_TURNS:
                logger.warning("[%s] %d silent turns in a row, closing", session.call_id, session.silent_turns)
                return self.machine.close(session)
            logger.info("[%s] empty utterance in %s, re-asking", session.call_id, session.state.value)
            return self.machine.reprompt(session)

        session.silent_turns = 0
        session.add_turn("caller", text)
        logger.info("[%s] [%s] Caller: %s", session.call_id, session.state.value, text)

        if detect_emergency(text):
            return self.machine.resolve(
                session, text, "", session.state, {}, done=True, emergency=True,
            )
        if session.state == ConversationState.START:
            session.turn_count += 1
            return self.machine.opening(session)
        if session.turn_count >= MAX_TURNS_PER_CALL:
            logger.warning("[%s] turn limit reached, closing", session.call_id)
            return self.machine.close(session)

        try:
            data = await asyncio.wait_for(
                self.llm.complete_json(build_messages(session, text)),
                timeout=self.timeout,
            )
            reply = AgentReply.model_validate(data)
        except asyncio.TimeoutError:
            logger.warning("[%s] LLM timed out after %.1fs, using fallback", session.call_id, self.timeout)
            return self._fallback(session)
        except LLMError as e:
            logger.warning("[%s] LLM failed, using fallback: %s", session.call_id, e)
            return self._fallback(session)
        except ValidationError as e:
            logger.warning("[%s] LLM reply failed validation, using fallback: %s", session.call_id, e)
            return self._fallback(session)

        return self.machine.resolve(
            session,
            text,
            reply.assistant_say,
            reply.next_state,
            reply.updates,
            reply.done,
        )

    def _fallback(self, session: CallSession) -> TurnResult:
        session.turn_count += 1
        return self.machine.fallback(session)
