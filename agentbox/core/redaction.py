"""Redaction of credentials in user-visible log messages."""

import re

_TOKEN_PATTERNS = [
    # Anthropic, OpenAI and AI gateway keys
    re.compile(r"\b(?:sk-|vck_)[A-Za-z0-9_-]{16,}"),
    # GitHub personal, OAuth, user, server and refresh tokens
    re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})"),
]
_URL_USERINFO = re.compile(r"(https?://)([^:@/\s]+)(?::([^@/\s]*))?@")
_BEARER = re.compile(r"(Bearer\s+)([A-Za-z0-9._~+/=-]{8,})")
_ASSIGNMENT = re.compile(
    r"\b([A-Z0-9_]*(?:KEY|TOKEN|SECRET|PASSWORD)[A-Z0-9_]*)(\s*[=:]\s*[\"']?)([^\s\"']{8,})"
)


def mask_secret(value: str) -> str:
    """Keep the first and last four characters of a secret and mask the rest."""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * max(8, len(value) - 8)}{value[-4:]}"


def _mask_userinfo(match: re.Match) -> str:
    scheme, user, password = match.group(1), match.group(2), match.group(3)
    if password is None:
        return f"{scheme}{mask_secret(user)}@"
    if password == "x-oauth-basic":
        return f"{scheme}{mask_secret(user)}:{password}@"
    return f"{scheme}{user}:{mask_secret(password)}@"


def redact_sensitive_info(message: str) -> str:
    """Mask API keys, tokens and secret assignments in a log message."""
    redacted = _URL_USERINFO.sub(_mask_userinfo, message)
    for pattern in _TOKEN_PATTERNS:
        redacted = pattern.sub(lambda m: mask_secret(m.group(0)), redacted)
    redacted = _BEARER.sub(lambda m: m.group(1) + mask_secret(m.group(2)), redacted)
    return _ASSIGNMENT.sub(
        lambda m: m.group(1) + m.group(2) + mask_secret(m.group(3)), redacted
    )
