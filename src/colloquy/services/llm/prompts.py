"""Prompt building for conversation turns."""

from typing import Dict, Mapping, Optional, Sequence

from ...models.dialogue import Turn


class PromptBuilder:
    """Builds the prompt for the next turn from the transcript so far.

    ``build`` is pure: the same history and topic always give the same prompt.
    """

    def __init__(self, speaker_order: Sequence[str], display_names: Optional[Mapping[str, str]] = None):
        if not speaker_order:
            raise ValueError("speaker_order cannot be empty")
        self.speaker_order = tuple(speaker_order)
        self.display_names: Dict[str, str] = dict(display_names or {})

    def display_name(self, speaker_id: str) -> str:
        return self.display_names.get(speaker_id) or speaker_id

    def next_speaker(self, speaker_id: str) -> str:
        """Return the speaker who follows ``speaker_id`` in rotation order."""
        try:
            index = self.speaker_order.index(speaker_id)
        except ValueError:
            raise ValueError(f"Speaker {speaker_id} not found in speaker order") from None
        return self.speaker_order[(index + 1) % len(self.speaker_order)]

    def build(self, speaker_id: str, history: Sequence[Turn], topic: str) -> str:
        if speaker_id not in self.speaker_order:
            raise ValueError(f"Speaker {speaker_id} not found in speaker order")

        lines = [f'The topic of conversation is: "{topic}"', ""]

        if not history:
            lines.append(
                f'You are starting the conversation on the topic "{topic}". '
                "Introduce your perspective on this topic."
            )
            return "\n".join(lines)

        lines.append("Previous conversation:")
        for turn in history:
            lines.append(f"{self.display_name(turn.speaker_id)}: {turn.response}")
        lines.append("")

        # Address whoever spoke last; with two speakers that is also the next in rotation
        addressee = self.display_name(history[-1].speaker_id)
        lines.append(f"Continue the conversation by responding to {addressee}'s last message.")
        return "\n".join(lines)
