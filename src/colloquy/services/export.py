"""Transcript rendering and export."""

import html
import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

import markdown

from ..models.conversation_config import ExportFormat
from ..models.dialogue import Turn

logger = logging.getLogger(__name__)

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; max-width: 800px; margin: 0 auto; padding: 20px; }}
    h1 {{ text-align: center; margin-bottom: 30px; }}
    h2 {{ font-size: 1.1em; color: #333; }}
    p {{ white-space: pre-wrap; }}
  </style>
</head>
<body>
{body}
</body>
</html>
"""

EXTENSIONS = {
    ExportFormat.JSON: ".json",
    ExportFormat.TEXT: ".txt",
    ExportFormat.MARKDOWN: ".md",
    ExportFormat.HTML: ".html",
}


class TranscriptExporter:
    """Formats a finished (or partial) transcript for output."""

    def __init__(self, display_names: Optional[Mapping[str, str]] = None):
        self.display_names: Dict[str, str] = dict(display_names or {})

    @staticmethod
    def supported_formats() -> List[str]:
        return [f.value for f in ExportFormat]

    @staticmethod
    def file_extension(fmt: Union[str, ExportFormat]) -> str:
        return EXTENSIONS[ExportFormat(str(getattr(fmt, "value", fmt)).lower())]

    def _name(self, speaker_id: str) -> str:
        return self.display_names.get(speaker_id) or speaker_id

    def format(
        self,
        turns: Sequence[Turn],
        fmt: Union[str, ExportFormat] = ExportFormat.JSON,
        title: str = "LLM Conversation"
    ) -> str:
        try:
            fmt = ExportFormat(str(getattr(fmt, "value", fmt)).lower())
        except ValueError:
            raise ValueError(
                f"Format {fmt} is not supported (use one of: {', '.join(self.supported_formats())})"
            ) from None

        if fmt == ExportFormat.JSON:
            return self.to_json(turns)
        if fmt == ExportFormat.TEXT:
            return self.to_text(turns, title)
        if fmt == ExportFormat.MARKDOWN:
            return self.to_markdown(turns, title)
        return self.to_html(turns, title)

    def to_json(self, turns: Sequence[Turn]) -> str:
        return json.dumps([turn.model_dump(mode="json") for turn in turns], indent=2)

    def to_text(self, turns: Sequence[Turn], title: str) -> str:
        lines = [title.upper(), ""]
        for turn in turns:
            lines.append(f"Turn {turn.turn_number}: {self._name(turn.speaker_id)}")
            lines.append(turn.response)
            lines.append("")
        return "\n".join(lines)

    def to_markdown(self, turns: Sequence[Turn], title: str) -> str:
        lines = [f"# {title}", ""]
        for turn in turns:
            lines.append(f"## Turn {turn.turn_number}: {self._name(turn.speaker_id)}")
            lines.append("")
            lines.append(turn.response)
            lines.append("")
        return "\n".join(lines)

    def to_html(self, turns: Sequence[Turn], title: str) -> str:
        # Escape responses and speaker names before markdown rendering
        safe_turns = [
            turn.model_copy(update={"response": html.escape(turn.response)})
            for turn in turns
        ]
        safe_names = TranscriptExporter({
            turn.speaker_id: html.escape(self._name(turn.speaker_id)) for turn in turns
        })
        body = markdown.markdown(safe_names.to_markdown(safe_turns, html.escape(title)))
        return HTML_TEMPLATE.format(title=html.escape(title), body=body)

    def export(
        self,
        turns: Sequence[Turn],
        fmt: Union[str, ExportFormat],
        output_path: Path,
        title: str = "LLM Conversation"
    ) -> Path:
        """Write the transcript to ``output_path`` in the given format."""
        content = self.format(turns, fmt, title)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(content, encoding="utf-8")
        logger.info(f"Conversation exported to {output_path} in {getattr(fmt, 'value', fmt)} format")
        return output_path
