"""
Oracle Response Parser

Turns free-text oracle completions into decoded JSON. Fails closed: the
caller gets either the decoded value or a ParseError, never a guess.
Fallback policy is left to each stage.
"""

import json
import logging
import re
from typing import Any

from agentic_tutor_pipeline.errors import ParseError

logger = logging.getLogger(__name__)

# ```json ... ``` anywhere in the text
FENCED_BLOCK = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL)


class ResponseParser:
    """Strict JSON decoder for oracle output."""

    def strip_fences(self, raw: str) -> str:
        """
        Remove code-fence markers around the payload.

        Handles a fully fenced completion as well as a fenced block with
        prose before or after it.

        Args:
            raw: Oracle completion text

        Returns:
            The trimmed payload text
        """
        text = (raw or "").strip()
        match = FENCED_BLOCK.search(text)
        if match:
            return match.group(1).strip()
        # Unterminated fence: drop the opening line only
        if text.startswith("```"):
            first_newline = text.find("\n")
            text = text[first_newline + 1:] if first_newline != -1 else ""
        return text.strip()

    def parse(self, raw: str) -> Any:
        """
        Decode an oracle completion as JSON.

        Raises:
            ParseError: if the text is empty or not valid JSON
        """
        cleaned = self.strip_fences(raw)
        if not cleaned:
            raise ParseError("Oracle response was empty after removing code fences")

        try:
            return json.loads(cleaned)
        except (json.JSONDecodeError, ValueError) as e:
            logger.debug("Undecodable oracle output: %s", cleaned[:200])
            raise ParseError(f"Oracle response is not valid JSON: {e}") from e
