import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import (
    AbortedConversationError,
    ConfigurationError,
    ConversationCancelledError,
    FallbackFailedError,
    ProviderError,
    RetriesExhaustedError
)
from ..models.conversation_config import ConversationSettings, ErrorPolicyConfig
from ..models.dialogue import Turn
from ..models.speaker import SpeakerDefinition
from .cancellation import CancellationToken
from .error_policy import ErrorPolicy, ProviderCall
from .llm import LLMProvider, PromptBuilder, ProviderRegistry

logger = logging.getLogger(__name__)

ERROR_PLACEHOLDER = "[error: no response generated]"

TurnCallback = Callable[[Turn], None]


class ConversationState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"
    CANCELLED = "cancelled"


def speaker_for_turn(turn: int, first_speaker: str, speaker_order: Sequence[str]) -> str:
    """Round-robin over declaration order, starting at ``first_speaker`` on turn 1."""
    start = list(speaker_order).index(first_speaker)
    return speaker_order[(start + turn - 1) % len(speaker_order)]


class ConversationOrchestrator:
    """Drives a turn-based conversation between configured speakers."""

    def __init__(
        self,
        speakers: Sequence[SpeakerDefinition],
        settings: ConversationSettings,
        registry: ProviderRegistry,
        error_policy: Optional[ErrorPolicy] = None,
        on_turn: Optional[TurnCallback] = None,
        cancellation: Optional[CancellationToken] = None
    ):
        self._validate_speakers(speakers, settings)

        self.speakers: Dict[str, SpeakerDefinition] = {s.id: s for s in speakers}
        self.speaker_order: Tuple[str, ...] = tuple(s.id for s in speakers)
        self.settings = settings
        self.first_speaker = settings.first_speaker or self.speaker_order[0]
        self.registry = registry
        self.cancellation = cancellation or CancellationToken()
        self.error_policy = error_policy or ErrorPolicy(
            ErrorPolicyConfig(),
            registry=registry,
            cancellation=self.cancellation
        )
        self.on_turn = on_turn
        self.prompt_builder = PromptBuilder(
            self.speaker_order,
            {s.id: s.display_name for s in speakers}
        )

        self.state = ConversationState.NOT_STARTED
        self._turns: List[Turn] = []

        # Providers are built up front so missing credentials fail at startup
        self.providers: Dict[str, LLMProvider] = {}
        for speaker in speakers:
            try:
                self.providers[speaker.id] = registry.create(speaker)
            except ConfigurationError:
                # Built providers open no connections before their first call
                logger.debug(f"Discarding {len(self.providers)} providers built before the failure")
                self.providers.clear()
                raise

    @staticmethod
    def _validate_speakers(speakers: Sequence[SpeakerDefinition], settings: ConversationSettings) -> None:
        if len(speakers) < 2:
            raise ConfigurationError("A conversation needs at least two speakers")

        ids = [s.id for s in speakers]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate speaker ids: {', '.join(duplicates)}")

        if settings.first_speaker is not None and settings.first_speaker not in ids:
            raise ConfigurationError(
                f"First speaker {settings.first_speaker} not found in speakers"
            )

    @property
    def history(self) -> Tuple[Turn, ...]:
        """Snapshot of the turns so far."""
        return tuple(self._turns)

    def speaker_for_turn(self, turn: int) -> str:
        return speaker_for_turn(turn, self.first_speaker, self.speaker_order)

    def cancel(self) -> None:
        """Stop the conversation at the next suspension point."""
        self.cancellation.cancel()

    async def run(self) -> Tuple[Turn, ...]:
        """Run the whole conversation and return its turns."""
        if self.state != ConversationState.NOT_STARTED:
            raise RuntimeError(f"Conversation already {self.state.value}")

        num_turns = self.settings.num_turns
        delay_ms = self.settings.delay_between_turns_ms
        self.state = ConversationState.RUNNING

        logger.info(f"Starting conversation on topic: \"{self.settings.topic}\"")
        logger.info(f"First speaker: {self.first_speaker}, turns: {num_turns}, delay: {delay_ms}ms")

        try:
            for turn_number in range(1, num_turns + 1):
                self.cancellation.raise_if_cancelled()
                await self._take_turn(turn_number)

                if turn_number < num_turns and delay_ms > 0:
                    logger.debug(f"Waiting for {delay_ms}ms before next turn...")
                    await self.cancellation.sleep(delay_ms / 1000)

            self.cancellation.raise_if_cancelled()

        except ConversationCancelledError:
            self.state = ConversationState.CANCELLED
            logger.warning(f"Conversation cancelled after {len(self._turns)} turns")
            raise ConversationCancelledError(self.history) from None
        except ProviderError as e:
            # Only the abort strategy lets provider errors through
            self.state = ConversationState.ABORTED
            logger.error(f"Conversation aborted on turn {len(self._turns) + 1}: {e}")
            raise AbortedConversationError(self.history, e) from e
        except (RetriesExhaustedError, FallbackFailedError, ConfigurationError) as e:
            self.state = ConversationState.FAILED
            logger.error(f"Conversation failed on turn {len(self._turns) + 1}: {e}")
            raise
        except Exception as e:
            self.state = ConversationState.FAILED
            logger.error(f"Unexpected error on turn {len(self._turns) + 1}: {e}")
            raise

        self.state = ConversationState.COMPLETED
        logger.info("Conversation completed")
        return self.history

    async def _take_turn(self, turn_number: int) -> Turn:
        speaker_id = self.speaker_for_turn(turn_number)
        speaker = self.speakers[speaker_id]
        logger.info(f"Turn {turn_number}/{self.settings.num_turns} - Speaker: {speaker_id}")

        prompt = self.prompt_builder.build(speaker_id, self.history, self.settings.topic)

        async def operation(provider: LLMProvider) -> str:
            params = provider.map_character_params(speaker.character)
            return await provider.generate_response(prompt, params, speaker.character.system_prompt or None)

        call = ProviderCall(
            speaker=speaker,
            provider=self.providers[speaker_id],
            operation=operation,
            operation_name=f"turn {turn_number}"
        )

        start = time.perf_counter()
        response = await self.cancellation.guard(self.error_policy.execute(call))
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Response generated in {elapsed_ms:.0f}ms")

        if response is None:
            response = ERROR_PLACEHOLDER

        turn = Turn(
            turn_number=turn_number,
            speaker_id=speaker_id,
            prompt=prompt,
            response=response,
            elapsed_ms=elapsed_ms
        )
        self._turns.append(turn)

        if self.on_turn:
            self.on_turn(turn)
        return turn

    async def close(self) -> None:
        """Close every provider this orchestrator created."""
        for provider in self.providers.values():
            await provider.close()
