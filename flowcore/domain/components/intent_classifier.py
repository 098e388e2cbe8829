"""Deterministic regex intent classifier."""

import re

from flowcore.domain.interfaces.collaborators import IntentClassifier
from flowcore.domain.models.dialog_session import Intent

# Purchase intent must be explicit: "service" alone never means BUY_SERVICE
_BUY = re.compile(
    r"\bbuy\b|\bpurchase\b|\border\s+now\b|\bplace\s+order\b|\bcheckout\b|\bget\s+service\b"
    r"|\bwant\s+to\s+buy\b|\bhow\s+to\s+buy\b",
    re.IGNORECASE,
)
_STATUS = re.compile(
    r"\border\s+status\b|\btrack\b|\btracking\b|\bdelivery\b|\bwhere\s+is\s+my\s+order\b"
    r"|\border\s+update\b|\bwhen\s+will\b",
    re.IGNORECASE,
)
_INTERVIEW = re.compile(
    r"\bassessment\b|\bscreening\b|\binterview\b|\bvideo\s+test\b",
    re.IGNORECASE,
)
_PAYMENT = re.compile(
    r"\bpayment\b|\bpaid\b|\btransaction\b|\bscreenshot\b|\bsent\s+payment\b"
    r"|\bverify\s+payment\b",
    re.IGNORECASE,
)
_CUSTOM = re.compile(
    r"\bcustom\b|\bnot\s+listed\b|\bspecial\s+request\b|\badd\s+service\b|\bnot\s+available\b",
    re.IGNORECASE,
)

INTENT_PATTERNS: tuple[tuple[Intent, re.Pattern[str]], ...] = (
    (Intent.BuyService, _BUY),
    (Intent.OrderStatus, _STATUS),
    (Intent.InterviewHelp, _INTERVIEW),
    (Intent.PaymentHelp, _PAYMENT),
    (Intent.CustomService, _CUSTOM),
)
"""Checked in order; the first match wins."""


class RegexIntentClassifier(IntentClassifier):
    """Maps text to an intent with ordered regular expressions. No I/O."""

    def __init__(
        self,
        patterns: tuple[tuple[Intent, re.Pattern[str]], ...] = INTENT_PATTERNS,
    ) -> None:
        self._patterns = patterns

    def classify(self, text: str) -> Intent:
        if not isinstance(text, str) or not text.strip():
            return Intent.GeneralChat
        for intent, pattern in self._patterns:
            if pattern.search(text):
                return intent
        return Intent.GeneralChat
