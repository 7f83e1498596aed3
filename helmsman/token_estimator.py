"""Approximate token counting.

The estimate weighs characters by class over the JSON form of each message,
which tracks the real request body (field names, quotes, braces) closely
enough for budget decisions. It is deliberately not a tokenizer.
"""

import json
import string
from typing import Any

from helmsman.messages import Message, to_api_payload

TOKEN_LETTER_WEIGHT = 4.2
TOKEN_NUMBER_WEIGHT = 3.5
TOKEN_PUNCTUATION_WEIGHT = 1.0
TOKEN_WHITESPACE_WEIGHT = 0.15
TOKEN_OTHER_WEIGHT = 3.0

_ASCII_LETTERS = frozenset(string.ascii_letters)
_DIGITS = frozenset(string.digits)
_PUNCTUATION = frozenset(string.punctuation)


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in a text string."""
    if not text:
        return 0

    letters = numbers = punctuation = whitespace = other = 0
    for char in text:
        if char in _ASCII_LETTERS:
            letters += 1
        elif char in _DIGITS:
            numbers += 1
        elif char in _PUNCTUATION:
            punctuation += 1
        elif char.isspace():
            whitespace += 1
        else:
            other += 1

    estimate = (
        letters / TOKEN_LETTER_WEIGHT
        + numbers / TOKEN_NUMBER_WEIGHT
        + punctuation * TOKEN_PUNCTUATION_WEIGHT
        + whitespace * TOKEN_WHITESPACE_WEIGHT
        + other / TOKEN_OTHER_WEIGHT
    )
    return round(max(0.0, estimate))


def estimate_message_tokens(message: Message) -> int:
    """Estimate tokens for one message as it appears in the request body."""
    return estimate_tokens(json.dumps(to_api_payload(message), ensure_ascii=False))


def estimate_tool_definitions_tokens(definitions: list[dict[str, Any]]) -> int:
    """Estimate tokens spent on the tool schema block of a request."""
    if not definitions:
        return 0
    return estimate_tokens(json.dumps(definitions, ensure_ascii=False))
