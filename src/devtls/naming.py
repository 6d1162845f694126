"""Domain name <-> filesystem identifier conversion.

``sanitize`` is lossy: every character outside ``[A-Za-z0-9._-]`` becomes the
wildcard marker, so two different raw domains (e.g. some punycode or
non-ASCII edge cases) may collide on the same identifier. ``unsanitize`` only
reverses the leading wildcard. Changing either would alter the on-disk layout
of existing installations.
"""

import re

WILDCARD_MARKER = "_"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize(domain: str) -> str:
    """Turn a domain (possibly ``*.example.test``) into a directory name."""
    sanitized = domain.replace("*", WILDCARD_MARKER)
    return _UNSAFE_CHARS.sub(WILDCARD_MARKER, sanitized)


def unsanitize(identifier: str) -> str:
    """Restore a leading wildcard; any other identifier is returned as is."""
    if identifier.startswith(WILDCARD_MARKER):
        return "*" + identifier[len(WILDCARD_MARKER):]
    return identifier


def is_wildcard(domain: str) -> bool:
    return domain.startswith("*.")


def is_wildcard_identifier(identifier: str) -> bool:
    return identifier.startswith(WILDCARD_MARKER)


def base_domain(domain: str) -> str:
    """``*.local.test`` -> ``local.test``; other domains unchanged."""
    if is_wildcard(domain):
        return domain[2:]
    return domain
