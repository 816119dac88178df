"""
Text utilities for cleaning LLM responses.
"""

from typing import List

CODE_FENCE = '```'


def clean_code_fence(response: str) -> str:
    """Remove a surrounding Markdown code block from an LLM response.

    Args:
        response: Raw LLM response

    Returns:
        Response without the opening ```lang and closing ``` markers
    """
    response = response.strip()

    if response.startswith(CODE_FENCE):
        first_newline = response.find('\n')
        response = response[first_newline + 1:] if first_newline != -1 else ''

    if response.endswith(CODE_FENCE):
        response = response[:-len(CODE_FENCE)]

    return response.strip()


def split_lines(text: str) -> List[str]:
    """Split text into trimmed, non-empty lines."""
    return [line.strip() for line in text.split('\n') if line.strip()]
