"""Placeholder extraction and substitution for prompt templates."""

import re


PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def extract_keys(template: str) -> list[str]:
    """
    Find the placeholder keys used in a template.

    Args:
        template: Prompt text containing ``{{key}}`` tokens

    Returns:
        Distinct keys in the order they first appear
    """
    keys: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(template):
        keys.setdefault(match.group(1), None)
    return list(keys)


def resolve_placeholders(template: str, values: dict[str, str]) -> str:
    """
    Substitute placeholder tokens with their values.

    Tokens without a value resolve to an empty string. Substituted text is
    never scanned again, so values containing ``{{...}}`` are left literal.

    Args:
        template: Prompt text containing ``{{key}}`` tokens
        values: Mapping of key to replacement text

    Returns:
        The resolved prompt text
    """
    return PLACEHOLDER_RE.sub(lambda match: values.get(match.group(1), ""), template)
