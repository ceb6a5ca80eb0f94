"""
Spam scoring for guestbook messages.

Each rule adds a fixed amount; the total is clamped to 0-100. A score of 50
marks the message as spam and 80 rejects it outright.
"""
import re
from dataclasses import dataclass
from typing import Optional

SPAM_KEYWORDS = (
    "viagra",
    "casino",
    "lottery",
    "prize",
    "winner",
    "congratulations",
    "click here",
    "free money",
)

CAPS_RATIO_LIMIT = 0.5
CAPS_PENALTY = 20
PUNCTUATION_RATIO_LIMIT = 0.3
PUNCTUATION_PENALTY = 15
KEYWORD_PENALTY = 25
LINK_LIMIT = 2
LINK_PENALTY = 30

SPAM_THRESHOLD = 50
REJECT_THRESHOLD = 80
REJECT_REASON = "Automatically rejected due to high spam score"

UPPERCASE_RE = re.compile(r"[A-Z]")
PUNCTUATION_RE = re.compile(r"[!?.,;:]")
LINK_RE = re.compile(r"https?://\S+")


@dataclass(frozen=True)
class SpamVerdict:
    score: int
    is_spam: bool
    auto_status: Optional[str] = None

    @property
    def moderation_reason(self) -> Optional[str]:
        return REJECT_REASON if self.auto_status == "rejected" else None

    def as_dict(self) -> dict:
        return {"score": self.score, "is_spam": self.is_spam, "auto_status": self.auto_status}


def _ratio(pattern: re.Pattern, text: str) -> float:
    if not text:
        return 0.0
    return len(pattern.findall(text)) / len(text)


def score_message(name: str, message: str) -> SpamVerdict:
    """
    Score a guestbook message.

    `name` is accepted so callers re-score whenever either field changes;
    only the message text feeds the rules.
    """
    message = message or ""
    score = 0

    if _ratio(UPPERCASE_RE, message) > CAPS_RATIO_LIMIT:
        score += CAPS_PENALTY

    if _ratio(PUNCTUATION_RE, message) > PUNCTUATION_RATIO_LIMIT:
        score += PUNCTUATION_PENALTY

    lowered = message.lower()
    score += KEYWORD_PENALTY * sum(1 for keyword in SPAM_KEYWORDS if keyword in lowered)

    if len(LINK_RE.findall(message)) > LINK_LIMIT:
        score += LINK_PENALTY

    score = max(0, min(score, 100))
    auto_status = "rejected" if score >= REJECT_THRESHOLD else None
    return SpamVerdict(score=score, is_spam=score >= SPAM_THRESHOLD, auto_status=auto_status)
