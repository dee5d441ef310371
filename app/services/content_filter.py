"""
Content and spam filter

Two independent checks gate every text message:

- a word-list check against the loaded `WordPolicy` (substring match,
  case-insensitive, per-rule replacement);
- spam heuristics (frequency, duplicates, caps ratio, character repetition,
  URL density) backed by short-lived counters in the cache.

`evaluate` only reads and writes cache counters. `screen` evaluates and,
when the message is blocked, writes the audit records and applies the
automatic mute for high severity spam.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.config import Settings
from app.core.logging import get_logger, log_security_event
from app.database.sql import unit_of_work
from app.models.moderation_actions import (
    ACTION_CONTENT_FILTER,
    ACTION_SPAM_DETECTION,
    ModerationAction,
)
from app.services.broadcast import publish_to_room
from app.services.cache_service import ChatCacheService
from app.services.moderation_service import ModerationService
from app.services.word_policy import SEVERITY_RANK, WordPolicy
from app.utils.text_utils import normalize_for_comparison

logger = get_logger(__name__)

URL_PATTERN = re.compile(r'https?://\S+', re.IGNORECASE)
LETTER_PATTERN = re.compile(r'[A-Za-z]')
UPPER_PATTERN = re.compile(r'[A-Z]')

SPAM_COUNTER_TTL = 300  # seconds a per-user counter outlives its last write
DEFAULT_AUDIT_REASON = "Automated content filtering"
AUTO_MUTE_REASON = "Automatic mute for spam detection"


def _max_severity(current: str, candidate: str) -> str:
    return candidate if SEVERITY_RANK[candidate] > SEVERITY_RANK[current] else current


@dataclass
class CheckResult:
    violations: List[Dict] = field(default_factory=list)
    severity: str = "none"
    action_required: bool = False
    filtered: Optional[str] = None

    @property
    def has_violations(self) -> bool:
        return bool(self.violations)


@dataclass
class FilterResult:
    allowed: bool
    filtered_body: str
    severity: str = "none"
    content: CheckResult = field(default_factory=CheckResult)
    spam: CheckResult = field(default_factory=CheckResult)
    actions_taken: List[str] = field(default_factory=list)

    @property
    def violations(self) -> List[Dict]:
        return (
            [dict(v, category="content") for v in self.content.violations]
            + [dict(v, category="spam") for v in self.spam.violations]
        )

    @property
    def reason(self) -> Optional[str]:
        if self.allowed:
            return None
        if self.content.action_required:
            return "Message blocked: inappropriate content"
        return "Message blocked: spam detected"

    def to_dict(self) -> Dict:
        return {
            "allowed": self.allowed,
            "filtered_body": self.filtered_body,
            "severity": self.severity,
            "violations": self.violations,
            "actions_taken": self.actions_taken,
        }


class ContentFilter:
    def __init__(
        self,
        cache: ChatCacheService,
        moderation: ModerationService,
        clock: Clock,
        settings: Settings,
        policy: Optional[WordPolicy] = None,
    ):
        self.cache = cache
        self.moderation = moderation
        self.clock = clock
        self.settings = settings
        self.policy = policy or WordPolicy.default()

    # =========================================================================
    # Word list
    # =========================================================================

    def check_content(self, message: str) -> CheckResult:
        result = CheckResult()
        lowered = message.lower()
        filtered = message

        for rule in self.policy.rules:
            if rule.pattern not in lowered:
                continue
            result.violations.append({
                "type": "inappropriate_word",
                "word": rule.pattern,
                "severity": rule.severity,
            })
            result.severity = _max_severity(result.severity, rule.severity)
            if rule.replacement is not None:
                filtered = re.sub(re.escape(rule.pattern), lambda _: rule.replacement, filtered, flags=re.IGNORECASE)

        result.action_required = result.severity == "high" or len(result.violations) >= 3
        result.filtered = filtered
        return result

    # =========================================================================
    # Spam heuristics
    # =========================================================================

    def detect_spam(self, message: str, user_id: int, room_id: int) -> CheckResult:
        result = CheckResult()

        frequency = self.check_message_frequency(user_id, room_id)
        if frequency["is_spam"]:
            result.violations.append({"type": "high_frequency", "severity": "high", "details": frequency})
            result.severity = _max_severity(result.severity, "high")

        duplicates = self.check_duplicate_messages(message, user_id, room_id)
        if duplicates["is_spam"]:
            result.violations.append({"type": "duplicate_message", "severity": "medium", "details": duplicates})
            result.severity = _max_severity(result.severity, "medium")

        caps = self.check_excessive_caps(message)
        if caps["is_spam"]:
            result.violations.append({"type": "excessive_caps", "severity": "low", "details": caps})
            result.severity = _max_severity(result.severity, "low")

        repetition = self.check_character_repetition(message)
        if repetition["is_spam"]:
            result.violations.append({"type": "character_repetition", "severity": "low", "details": repetition})
            result.severity = _max_severity(result.severity, "low")

        urls = self.check_url_spam(message)
        if urls["is_spam"]:
            result.violations.append({"type": "url_spam", "severity": "medium", "details": urls})
            result.severity = _max_severity(result.severity, "medium")

        result.action_required = result.severity == "high" or len(result.violations) >= 2
        return result

    def check_message_frequency(self, user_id: int, room_id: int) -> Dict:
        """Trailing-window message count for (user, room), including this message"""
        key = self.cache.spam_frequency_key(user_id, room_id) + ":ts"
        now = self.clock.now()
        window = self.settings.spam_frequency_window_seconds
        cutoff = (now - timedelta(seconds=window)).timestamp()

        timestamps = [ts for ts in self.cache.get(key, []) if ts > cutoff]
        timestamps.append(now.timestamp())
        # Only the newest entries can matter for the limit
        timestamps = timestamps[-(self.settings.spam_message_limit * 4):]
        self.cache.put(key, timestamps, SPAM_COUNTER_TTL)

        count = len(timestamps)
        return {
            "is_spam": count > self.settings.spam_message_limit,
            "message_count": count,
            "limit": self.settings.spam_message_limit,
            "window_seconds": window,
        }

    def check_duplicate_messages(self, message: str, user_id: int, room_id: int) -> Dict:
        """Identical normalised bodies from (user, room) inside the duplicate window, including this one"""
        key = self.cache.spam_frequency_key(user_id, room_id) + ":hashes"
        now = self.clock.now()
        window_minutes = self.settings.spam_duplicate_window_minutes
        cutoff = (now - timedelta(minutes=window_minutes)).timestamp()
        digest = hashlib.md5(normalize_for_comparison(message).encode("utf-8")).hexdigest()

        recent = [entry for entry in self.cache.get(key, []) if entry[1] > cutoff]
        recent.append([digest, now.timestamp()])
        recent = recent[-50:]
        self.cache.put(key, recent, window_minutes * 60)

        duplicate_count = sum(1 for entry in recent if entry[0] == digest)
        return {
            "is_spam": duplicate_count >= self.settings.spam_duplicate_limit,
            "duplicate_count": duplicate_count,
            "limit": self.settings.spam_duplicate_limit,
            "window_minutes": window_minutes,
        }

    def check_excessive_caps(self, message: str) -> Dict:
        total_letters = len(LETTER_PATTERN.findall(message))
        if total_letters < self.settings.spam_caps_min_letters:
            return {"is_spam": False}

        caps = len(UPPER_PATTERN.findall(message))
        ratio = caps / total_letters
        return {
            "is_spam": ratio > self.settings.spam_caps_threshold,
            "caps_ratio": round(ratio, 3),
            "threshold": self.settings.spam_caps_threshold,
            "caps_count": caps,
            "total_letters": total_letters,
        }

    def check_character_repetition(self, message: str) -> Dict:
        total = len(message)
        if total < self.settings.spam_repetition_min_length:
            return {"is_spam": False}

        repeated = 0
        run_length = 1
        for i in range(1, total + 1):
            if i < total and message[i] == message[i - 1]:
                run_length += 1
                continue
            if run_length >= self.settings.spam_repetition_run:
                repeated += run_length
            run_length = 1

        ratio = repeated / total
        return {
            "is_spam": ratio > self.settings.spam_repetition_threshold,
            "repetition_ratio": round(ratio, 3),
            "threshold": self.settings.spam_repetition_threshold,
            "repetition_count": repeated,
            "total_chars": total,
        }

    def check_url_spam(self, message: str) -> Dict:
        urls = URL_PATTERN.findall(message)
        suspicious = sum(1 for pattern in self.policy.compiled_url_patterns if pattern.search(message))
        return {
            "is_spam": len(urls) > self.settings.spam_url_limit or suspicious > 0,
            "url_count": len(urls),
            "suspicious_patterns": suspicious,
            "urls": urls,
        }

    # =========================================================================
    # Combined decision
    # =========================================================================

    def evaluate(self, body: str, user_id: int, room_id: int) -> FilterResult:
        content = self.check_content(body)
        spam = self.detect_spam(body, user_id, room_id)

        result = FilterResult(
            allowed=True,
            filtered_body=content.filtered if content.has_violations else body,
            content=content,
            spam=spam,
        )
        if content.has_violations:
            result.severity = content.severity
            if content.action_required:
                result.allowed = False
                result.actions_taken.append("message_blocked")
        if spam.has_violations:
            result.severity = _max_severity(result.severity, spam.severity)
            if spam.action_required:
                result.allowed = False
                result.actions_taken.append("spam_blocked")
                if spam.severity == "high":
                    result.actions_taken.append("user_auto_muted")
        return result

    def screen(self, db: Session, body: str, user_id: int, room_id: int) -> FilterResult:
        """
        Evaluate a message and record the consequences of a block.

        Blocked content and blocked spam each get a system-actor audit
        record; high severity spam also mutes the sender. All of it is one
        unit of work, committed before this returns.
        """
        result = self.evaluate(body, user_id, room_id)
        if result.allowed:
            return result

        mute_event = None
        with unit_of_work(db):
            if result.content.action_required:
                self.moderation.record_action(
                    db, room_id, ACTION_CONTENT_FILTER, user_id,
                    reason=DEFAULT_AUDIT_REASON,
                    metadata={
                        "original_message": body,
                        "violations": result.content.violations,
                        "severity": result.content.severity,
                    },
                )
            if result.spam.action_required:
                self.moderation.record_action(
                    db, room_id, ACTION_SPAM_DETECTION, user_id,
                    reason=DEFAULT_AUDIT_REASON,
                    metadata={
                        "original_message": body,
                        "violations": result.spam.violations,
                        "severity": result.spam.severity,
                    },
                )
                if result.spam.severity == "high":
                    mute_event = self.moderation.auto_mute(db, room_id, user_id, AUTO_MUTE_REASON)

        log_security_event(
            logger,
            "message_blocked",
            severity=result.severity,
            user_id=user_id,
            room_id=room_id,
            actions_taken=result.actions_taken,
            violation_types=[v["type"] for v in result.violations],
        )

        if mute_event is not None:
            self.cache.invalidate_presence(room_id, user_id)
            publish_to_room(self.moderation.publisher, room_id, mute_event)
        elif "user_auto_muted" in result.actions_taken:
            result.actions_taken.remove("user_auto_muted")

        return result

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_filter_stats(self, db: Session, room_id: Optional[int] = None, days: int = 7) -> Dict:
        since = self.clock.now() - timedelta(days=days)
        query = select(ModerationAction).where(
            ModerationAction.created_at >= since,
            ModerationAction.action_type.in_([ACTION_CONTENT_FILTER, ACTION_SPAM_DETECTION]),
        )
        if room_id:
            query = query.where(ModerationAction.room_id == room_id)
        actions = db.execute(query).scalars().all()

        severity_breakdown = {"low": 0, "medium": 0, "high": 0}
        violation_types: Dict[str, int] = {}
        for action in actions:
            severity = action.severity
            if severity in severity_breakdown:
                severity_breakdown[severity] += 1
            for violation in (action.details or {}).get("violations", []):
                violation_type = violation.get("type", "unknown")
                violation_types[violation_type] = violation_types.get(violation_type, 0) + 1

        top_violations = dict(sorted(violation_types.items(), key=lambda item: item[1], reverse=True)[:10])
        return {
            "total_actions": len(actions),
            "content_filter_actions": sum(1 for a in actions if a.action_type == ACTION_CONTENT_FILTER),
            "spam_detection_actions": sum(1 for a in actions if a.action_type == ACTION_SPAM_DETECTION),
            "severity_breakdown": severity_breakdown,
            "top_violations": top_violations,
            "affected_users": len({a.target_user_id for a in actions}),
            "period_days": days,
        }
