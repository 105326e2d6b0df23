"""Prompt-injection screening for untrusted task text.

Task titles and descriptions are written by people (or other bots) and go
straight into the LLM conversation.  :func:`analyze_and_sanitize` flags
known injection techniques, neutralizes the most dangerous spans and scores
the overall risk.  Callers never reject a task on the score alone: they
continue with the sanitized text and leave an audit comment when the score
is high.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

MAX_DESCRIPTION_LENGTH = 5000
TRUNCATION_MARKER = "\n[TRUNCATED: description exceeded maximum length]"
HIGH_RISK_THRESHOLD = 0.5

INSTRUCTION_OVERRIDE = "instruction_override"
IDENTITY_MANIPULATION = "identity_manipulation"
ROLE_INJECTION = "role_injection"
DATA_EXFILTRATION = "data_exfiltration"
SUSPICIOUS_UNICODE = "suspicious_unicode"
DESCRIPTION_TRUNCATED = "description_truncated"

# An override or exfiltration phrase on its own must push the score past
# HIGH_RISK_THRESHOLD; identity phrasing alone stays below it.
SEVERITY_WEIGHTS: dict[str, float] = {
    INSTRUCTION_OVERRIDE: 0.6,
    IDENTITY_MANIPULATION: 0.35,
    ROLE_INJECTION: 0.6,
    DATA_EXFILTRATION: 0.6,
    SUSPICIOUS_UNICODE: 0.1,
    DESCRIPTION_TRUNCATED: 0.05,
}

INJECTION_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"ignore\s+(all\s+)?(the\s+)?(previous|prior|above)\s+instructions", re.I), INSTRUCTION_OVERRIDE),
    (re.compile(r"disregard\s+(all\s+)?(the\s+)?(above|previous|prior)", re.I), INSTRUCTION_OVERRIDE),
    (re.compile(r"forget\s+(everything|all|previous)", re.I), INSTRUCTION_OVERRIDE),
    (re.compile(r"do\s+not\s+follow\s+(your|the|any)", re.I), INSTRUCTION_OVERRIDE),
    (re.compile(r"override\s+(your|the|all)\s+(instructions|rules|prompt)", re.I), INSTRUCTION_OVERRIDE),

    (re.compile(r"you\s+are\s+now\s+", re.I), IDENTITY_MANIPULATION),
    (re.compile(r"act\s+as\s+(if\s+you\s+are\s+|a\s+|an\s+)", re.I), IDENTITY_MANIPULATION),
    (re.compile(r"pretend\s+(to\s+be|you\s+are)", re.I), IDENTITY_MANIPULATION),
    (re.compile(r"your\s+new\s+(role|identity|persona)", re.I), IDENTITY_MANIPULATION),

    (re.compile(r"^\s*system\s*:", re.I | re.M), ROLE_INJECTION),
    (re.compile(r"\[system\]", re.I), ROLE_INJECTION),
    (re.compile(r"\[/?INST\]", re.I), ROLE_INJECTION),
    (re.compile(r"<</?SYS>>", re.I), ROLE_INJECTION),
    (re.compile(r"<\|im_start\|>", re.I), ROLE_INJECTION),

    (re.compile(r"reveal\s+(your|the)\s+(api|secret|key|token|password|prompt)", re.I), DATA_EXFILTRATION),
    (re.compile(r"what\s+is\s+your\s+(api|secret|system)\s*(key|prompt|token)", re.I), DATA_EXFILTRATION),
    (re.compile(r"show\s+me\s+(your|the)\s+(system\s+)?prompt", re.I), DATA_EXFILTRATION),
]

# Chat-template role markers; replaced wholesale.
ROLE_MARKERS: list[re.Pattern] = [
    re.compile(r"\[system\]", re.I),
    re.compile(r"\[/?INST\]", re.I),
    re.compile(r"<</?SYS>>", re.I),
    re.compile(r"<\|im_start\|>.*?(?:<\|im_end\|>|\n|$)", re.I),
]

# Spans of these flags are replaced in the text handed to the model.
_NEUTRALIZED_FLAGS = {INSTRUCTION_OVERRIDE, DATA_EXFILTRATION}

# Zero-width characters and the soft hyphen
_SUSPICIOUS_UNICODE_RE = re.compile("[\\u200b\\u200c\\u200d\\u2060\\ufeff\\u00ad]")


class GuardResult(BaseModel):
    sanitized_text: str = ""
    flags: list[str] = Field(default_factory=list)
    risk_score: float = 0.0
    was_modified: bool = False

    @property
    def is_high_risk(self) -> bool:
        return self.risk_score > HIGH_RISK_THRESHOLD


def _score(flags: list[str]) -> float:
    return min(1.0, round(sum(SEVERITY_WEIGHTS.get(f, 0.1) for f in flags), 4))


def analyze_and_sanitize(text: str | None, max_length: int = MAX_DESCRIPTION_LENGTH) -> GuardResult:
    """Flag, neutralize and score injection attempts in ``text``."""
    if not text:
        return GuardResult()

    flags: list[str] = []

    def _flag(name: str) -> None:
        if name not in flags:
            flags.append(name)

    # Zero-width characters go first so they cannot split a phrase apart.
    sanitized = _SUSPICIOUS_UNICODE_RE.sub("", text)
    if sanitized != text:
        _flag(SUSPICIOUS_UNICODE)

    for pattern, flag in INJECTION_PATTERNS:
        if pattern.search(sanitized):
            _flag(flag)

    for marker in ROLE_MARKERS:
        sanitized = marker.sub("[BLOCKED]", sanitized)

    for pattern, flag in INJECTION_PATTERNS:
        if flag in _NEUTRALIZED_FLAGS:
            sanitized = pattern.sub("[FILTERED]", sanitized)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + TRUNCATION_MARKER
        _flag(DESCRIPTION_TRUNCATED)

    # Keep detection order stable: pattern flags, then unicode, then truncation.
    order = [INSTRUCTION_OVERRIDE, IDENTITY_MANIPULATION, ROLE_INJECTION,
             DATA_EXFILTRATION, SUSPICIOUS_UNICODE, DESCRIPTION_TRUNCATED]
    flags.sort(key=order.index)

    return GuardResult(
        sanitized_text=sanitized,
        flags=flags,
        risk_score=_score(flags),
        was_modified=sanitized != text,
    )
