"""
Token extraction from raw samples

Splits a raw event/sample string into the tokens the dictionary and the
matcher work with:
- A token is a run of alphanumerics plus '.', '_', '-', '@'
- Tokens are lower-cased
- Numbers, dotted numbers (IPs, versions), short tokens and long hex blobs are dropped

Examples:
    "GET /scripts/setup.php HTTP/1.1" → ["get", "scripts", "setup.php", "http"]
    "from 10.0.0.1 port 8080"         → ["from", "port"]
"""
from typing import List

OPTION_EXCLUDE_NUMERIC = True
OPTION_TO_LOWERCASE = True
OPTION_REMOVE_DUPLICATES = False
OPTION_TOKEN_MIN_LENGTH = 3
OPTION_REMOVE_HEXCODE = True
OPTION_HEXCODE_MIN_LENGTH = 20
OPTION_REMOVE_DOT_DIGIT = True

# Non-alphanumeric characters that belong to a token
TOKEN_CHARS = frozenset('._-@')

HEX_DIGITS = frozenset('0123456789abcdefABCDEF')


def is_token_char(c: str) -> bool:
    return c.isalnum() or c in TOKEN_CHARS


def split_runs(text: str) -> List[str]:
    """Split text into maximal runs of token characters."""
    runs = []
    start = None
    for idx, c in enumerate(text):
        if is_token_char(c):
            if start is None:
                start = idx
        elif start is not None:
            runs.append(text[start:idx])
            start = None
    if start is not None:
        runs.append(text[start:])
    return runs


def is_numeric(s: str) -> bool:
    return all(c.isnumeric() for c in s)


def is_hexcode(s: str) -> bool:
    return all(c in HEX_DIGITS for c in s)


def is_dot_digit(s: str) -> bool:
    return all(c.isnumeric() or c == '.' for c in s)


def extract_tokens(text: str) -> List[str]:
    """
    Extract ordered tokens from a raw string.

    Args:
        text: Raw sample or event text

    Returns:
        Tokens in order of appearance (duplicates kept)
    """
    tokens: List[str] = []
    if not text:
        return tokens

    for run in split_runs(text):
        if OPTION_EXCLUDE_NUMERIC and is_numeric(run):
            continue

        token = run.lower() if OPTION_TO_LOWERCASE else run

        if OPTION_REMOVE_DUPLICATES and token in tokens:
            continue

        if len(token) < OPTION_TOKEN_MIN_LENGTH:
            continue

        if OPTION_REMOVE_HEXCODE and len(run) >= OPTION_HEXCODE_MIN_LENGTH and is_hexcode(run):
            continue

        if OPTION_REMOVE_DOT_DIGIT and is_dot_digit(run):
            continue

        tokens.append(token)

    return tokens


def extract_tokens_from_samples(samples: List[str]) -> List[str]:
    """Concatenate the tokens of several samples, keeping sample order."""
    tokens = []
    for sample in samples:
        tokens.extend(extract_tokens(sample))
    return tokens
