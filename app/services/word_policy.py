"""
Word and link policy tables for the content filter

The filter logic never hardcodes words: it evaluates whatever `WordPolicy`
it is given. `WordPolicy.default()` ships the stock table; a JSON file with
the same shape can replace it (settings.word_policy_path):

    {
        "words": [{"pattern": "spam", "severity": "low", "replacement": "****"}],
        "suspicious_url_patterns": ["bit\\\\.ly", "free.*money"]
    }
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Pattern

from app.core.logging import get_logger

logger = get_logger(__name__)

SEVERITY_RANK = {"none": 0, "low": 1, "medium": 2, "high": 3}


@dataclass(frozen=True)
class WordRule:
    pattern: str
    severity: str = "low"
    replacement: Optional[str] = None  # None leaves the text as written


@dataclass
class WordPolicy:
    rules: List[WordRule] = field(default_factory=list)
    suspicious_url_patterns: List[str] = field(default_factory=list)

    def __post_init__(self):
        for rule in self.rules:
            if rule.severity not in SEVERITY_RANK or rule.severity == "none":
                raise ValueError(f"Invalid severity '{rule.severity}' for pattern '{rule.pattern}'")
        self._compiled_urls: List[Pattern] = [
            re.compile(pattern, re.IGNORECASE) for pattern in self.suspicious_url_patterns
        ]

    @property
    def compiled_url_patterns(self) -> List[Pattern]:
        return self._compiled_urls

    @classmethod
    def from_dict(cls, data: dict) -> "WordPolicy":
        rules = [
            WordRule(
                pattern=item["pattern"].lower(),
                severity=item.get("severity", "low"),
                replacement=item.get("replacement"),
            )
            for item in data.get("words", [])
        ]
        return cls(rules=rules, suspicious_url_patterns=list(data.get("suspicious_url_patterns", [])))

    @classmethod
    def from_file(cls, path: str) -> "WordPolicy":
        with Path(path).open(encoding="utf-8") as fp:
            policy = cls.from_dict(json.load(fp))
        logger.info(f"Loaded word policy from {path} ({len(policy.rules)} rules)")
        return policy

    @classmethod
    def default(cls) -> "WordPolicy":
        return cls.from_dict(DEFAULT_POLICY)


def load_word_policy(path: Optional[str]) -> WordPolicy:
    if path:
        return WordPolicy.from_file(path)
    return WordPolicy.default()


DEFAULT_POLICY = {
    "words": [
        {"pattern": "spam", "severity": "low", "replacement": "****"},
        {"pattern": "scam", "severity": "low", "replacement": "****"},
        {"pattern": "fake", "severity": "low"},
        {"pattern": "bot", "severity": "low"},
        {"pattern": "hack", "severity": "low"},
        {"pattern": "cheat", "severity": "low"},
        {"pattern": "stupid", "severity": "medium", "replacement": "[filtered]"},
        {"pattern": "idiot", "severity": "medium", "replacement": "[filtered]"},
        {"pattern": "moron", "severity": "medium"},
        {"pattern": "dumb", "severity": "medium"},
        {"pattern": "loser", "severity": "medium"},
        {"pattern": "hate", "severity": "high", "replacement": "[filtered]"},
        {"pattern": "kill", "severity": "high", "replacement": "[filtered]"},
        {"pattern": "die", "severity": "high", "replacement": "[filtered]"},
        {"pattern": "death", "severity": "high"},
        {"pattern": "murder", "severity": "high"},
        {"pattern": "drug", "severity": "high", "replacement": "[filtered]"},
        {"pattern": "drugs", "severity": "high", "replacement": "[filtered]"},
        {"pattern": "cocaine", "severity": "low"},
        {"pattern": "heroin", "severity": "low"},
        {"pattern": "weed", "severity": "low"},
        {"pattern": "porn", "severity": "high", "replacement": "[filtered]"},
        {"pattern": "sex", "severity": "medium", "replacement": "[filtered]"},
        {"pattern": "nude", "severity": "medium"},
        {"pattern": "naked", "severity": "medium"},
        {"pattern": "xxx", "severity": "high"},
    ],
    "suspicious_url_patterns": [
        r"bit\.ly",
        r"tinyurl",
        r"t\.co",
        r"goo\.gl",
        r"ow\.ly",
        r"free.*money",
        r"click.*here",
        r"limited.*time",
    ],
}
