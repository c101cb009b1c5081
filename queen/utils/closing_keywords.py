"""
Detect same-repository closing keyword references in a PR body.

Supported forms:
  - Fixes #123
  - Closes owner/repo#123
  - Resolves https://github.com/owner/repo/issues/123

Text inside fenced code blocks and inline code spans is ignored.
"""

import re
from typing import Optional

CLOSING_KEYWORD_PATTERN = re.compile(
    r"\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\b\s*:?\s+(\S+)",
    re.IGNORECASE,
)

_ISSUE_NUMBER = re.compile(r"^#(\d+)$")
_QUALIFIED_REFERENCE = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)#(\d+)$")
_ISSUE_URL = re.compile(
    r"^https://github\.com/([^/]+)/([^/]+)/issues/(\d+)$", re.IGNORECASE
)
_OPENING_FENCE = re.compile(r"^(`{3,}|~{3,})(.*)$")
_TRAILING_PUNCTUATION = re.compile(r"[),.;:!?]+$")


def _strip_inline_code(text: str) -> str:
    result = []
    index = 0
    while index < len(text):
        if text[index] != "`":
            result.append(text[index])
            index += 1
            continue

        fence_end = index
        while fence_end < len(text) and text[fence_end] == "`":
            fence_end += 1
        delimiter = text[index:fence_end]
        closing_index = text.find(delimiter, fence_end)
        if closing_index == -1:
            # Unclosed span: the rest is code
            break
        result.append(" ")
        index = closing_index + len(delimiter)
    return "".join(result)


def _strip_markdown_code(body: str) -> str:
    non_code_lines = []
    fence_char: Optional[str] = None
    fence_length = 0

    for line in body.splitlines():
        trimmed = line.lstrip()
        if fence_char is None:
            match = _OPENING_FENCE.match(trimmed)
            if match:
                fence_char = match.group(1)[0]
                fence_length = len(match.group(1))
            else:
                non_code_lines.append(line)
            continue

        closing = re.compile(rf"^{re.escape(fence_char)}{{{fence_length},}}\s*$")
        if closing.match(trimmed):
            fence_char = None
            fence_length = 0

    return _strip_inline_code("\n".join(non_code_lines))


def _resolve_target(target: str, owner: str, repo: str) -> Optional[int]:
    """Return the issue number a closing target points at in owner/repo."""
    simple = _ISSUE_NUMBER.match(target)
    if simple:
        return int(simple.group(1))

    for pattern in (_QUALIFIED_REFERENCE, _ISSUE_URL):
        match = pattern.match(target)
        if match:
            if match.group(1).lower() == owner and match.group(2).lower() == repo:
                return int(match.group(3))
            return None
    return None


def extract_same_repo_closing_issue_numbers(
    body: Optional[str], owner: str, repo: str
) -> list[int]:
    """
    Extract unique same-repo issue numbers referenced by closing keywords.

    Returns issue numbers in the order they first appear.
    """
    if not body:
        return []

    searchable = _strip_markdown_code(body)
    owner, repo = owner.lower(), repo.lower()
    seen: set[int] = set()
    numbers: list[int] = []

    for match in CLOSING_KEYWORD_PATTERN.finditer(searchable):
        target = _TRAILING_PUNCTUATION.sub("", match.group(1))
        number = _resolve_target(target, owner, repo)
        if number is not None and number not in seen:
            seen.add(number)
            numbers.append(number)

    return numbers


def has_same_repo_closing_keyword_ref(
    body: Optional[str], owner: str, repo: str
) -> bool:
    """Check whether the body closes at least one issue in owner/repo."""
    return bool(extract_same_repo_closing_issue_numbers(body, owner, repo))
