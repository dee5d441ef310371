"""
Message reports and threshold auto-moderation
"""

from collections import Counter
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.config import Settings
from app.core.errors import (
    Result,
    conflict,
    not_authorized,
    not_found,
    validation_failed,
)
from app.core.logging import get_logger, log_security_event
from app.core.validators import Validator
from app.database.sql import unit_of_work
from app.domain.events import UserMuted
from app.models.chat_messages import ChatMessage
from app.models.chat_reports import (
    REPORT_STATUSES,
    REPORT_TYPES,
    STATUS_DISMISSED,
    STATUS_PENDING,
    STATUS_RESOLVED,
    STATUS_REVIEWED,
    ChatReport,
)
from app.models.moderation_actions import ACTION_DELETE_MESSAGE, ACTION_MUTE_USER, ModerationAction
from app.models.users import User
from app.services.broadcast import BroadcastPublisher, publish_to_room
from app.services.cache_service import ChatCacheService
from app.services.content_filter import ContentFilter
from app.services.moderation_service import ModerationService, find_membership, find_room, find_user, page_info
from app.utils.time_utils import minutes_from, to_iso

logger = get_logger(__name__)

REVIEW_ACTIONS = {
    "resolve": STATUS_RESOLVED,
    "dismiss": STATUS_DISMISSED,
    "escalate": STATUS_REVIEWED,
}

REPORT_SEVERITY = {
    "hate_speech": "high",
    "violence": "high",
    "sexual_content": "high",
    "harassment": "medium",
    "misinformation": "medium",
    "inappropriate_content": "medium",
    "spam": "low",
    "other": "low",
}

AUTO_DELETE_REASON = "Automatic deletion due to multiple reports"
AUTO_RESOLVE_NOTE = "Auto-resolved due to message deletion from multiple reports"
ADMIN_ROLES = ["admin"]


class ReportService:
    def __init__(
        self,
        cache: ChatCacheService,
        moderation: ModerationService,
        content_filter: ContentFilter,
        publisher: BroadcastPublisher,
        clock: Clock,
        settings: Settings,
    ):
        self.cache = cache
        self.moderation = moderation
        self.content_filter = content_filter
        self.publisher = publisher
        self.clock = clock
        self.settings = settings

    # =========================================================================
    # Reporting
    # =========================================================================

    def report_message(
        self,
        db: Session,
        room_id: int,
        message_id: int,
        reporter_id: int,
        report_type: str,
        reason: Optional[str] = None,
    ) -> Result:
        """
        File a report against a message and run the auto-moderation check.

        The report insert, and the deletion it may trigger, commit together.
        """
        room = find_room(db, room_id)
        if room is None:
            return not_found("Room")
        if not room.is_active:
            return conflict("room_inactive", "Chat room is not active")

        message = db.get(ChatMessage, message_id)
        if message is None or message.room_id != room_id:
            return not_found("Message")
        if find_user(db, reporter_id) is None:
            return not_found("User")

        if message.user_id == reporter_id:
            return not_authorized("You cannot report your own message", code="self_report")

        errors = (
            Validator.validate_enum(report_type, REPORT_TYPES, "report_type")
            + Validator.validate_optional_text(reason, "reason", self.settings.reason_max_length)
        )
        if errors:
            return validation_failed("Invalid report", errors)

        existing = db.execute(
            select(ChatReport).where(
                ChatReport.message_id == message_id,
                ChatReport.reporter_id == reporter_id,
            )
        ).scalars().first()
        if existing is not None:
            return conflict(
                "duplicate_report",
                "You have already reported this message",
                existing_report_id=existing.id,
            )

        now = self.clock.now()
        with unit_of_work(db):
            report = ChatReport(
                message_id=message_id,
                reporter_id=reporter_id,
                reported_user_id=message.user_id,
                room_id=room_id,
                report_type=report_type,
                reason=reason,
                status=STATUS_PENDING,
                details={
                    "message_content": message.message,
                    "message_author_id": message.user_id,
                    "message_created_at": to_iso(message.created_at),
                },
                created_at=now,
                updated_at=now,
            )
            db.add(report)
            db.flush()
            auto_action = self.check_auto_moderation(db, message)

        if auto_action is not None:
            self.moderation.after_message_removed(room_id, message_id, None, AUTO_DELETE_REASON)
            log_security_event(
                logger,
                "auto_moderation_message_deleted",
                severity="medium",
                user_id=auto_action.target_user_id,
                room_id=room_id,
                message_id=message_id,
                report_count=auto_action.details.get("report_count"),
            )

        logger.info(
            f"Message {message_id} reported by user {reporter_id} ({report_type})",
            extra={"event_type": "message_reported", "room_id": room_id, "report_id": report.id}
        )

        return Result.success({
            "report": report.to_dict(),
            "report_id": report.id,
            "auto_moderated": auto_action is not None,
        })

    def check_auto_moderation(self, db: Session, message: ChatMessage) -> Optional[ModerationAction]:
        """
        Delete `message` once it has collected the threshold of pending reports.

        Runs inside the caller's unit of work. The audit record and the report
        resolutions are written while the message row still exists; the
        delete comes last.

        Returns:
            the system-actor audit record, or None below the threshold
        """
        pending = db.execute(
            select(ChatReport).where(
                ChatReport.message_id == message.id,
                ChatReport.status == STATUS_PENDING,
            )
        ).scalars().all()
        if len(pending) < self.settings.auto_moderation_report_threshold:
            return None

        action = self.moderation.record_action(
            db, message.room_id, ACTION_DELETE_MESSAGE, message.user_id,
            message_id=message.id,
            reason=AUTO_DELETE_REASON,
            metadata={
                "report_count": len(pending),
                "auto_action": True,
                "message_id": message.id,
                "original_message": message.message,
                "message_type": message.message_type,
                "author_id": message.user_id,
                "message_created_at": to_iso(message.created_at),
            },
        )

        now = self.clock.now()
        for report in pending:
            report.mark(STATUS_RESOLVED, None, AUTO_RESOLVE_NOTE, now)

        self.moderation.delete_message_row(db, message)
        return action

    # =========================================================================
    # Review
    # =========================================================================

    def review_report(
        self,
        db: Session,
        report_id: int,
        reviewer_id: int,
        action: str,
        notes: Optional[str] = None,
        delete_message: bool = False,
        mute_user: bool = False,
        mute_duration: Optional[int] = None,
    ) -> Result:
        """
        Close or escalate a report, optionally deleting the message and muting its author.

        Returns:
            Result with the updated report and `actions_performed`, the
            cascades that actually happened ('message_deleted', 'user_muted')
        """
        report = db.get(ChatReport, report_id)
        if report is None:
            return not_found("Report")

        authorized = self.moderation.authorize(db, report.room_id, reviewer_id)
        if not authorized.ok:
            return not_authorized("You are not authorized to review this report")

        errors = (
            Validator.validate_enum(action, list(REVIEW_ACTIONS), "action")
            + Validator.validate_optional_text(notes, "notes", self.settings.review_notes_max_length)
            + Validator.validate_duration(mute_duration, "mute_duration", self.settings.mute_max_minutes)
        )
        if errors:
            return validation_failed("Invalid review", errors)

        if report.status in (STATUS_RESOLVED, STATUS_DISMISSED):
            return conflict("report_closed", "This report has already been closed", status=report.status)

        now = self.clock.now()
        actions_performed = []
        deleted_message_id = None
        mute_event = None

        with unit_of_work(db):
            report.mark(REVIEW_ACTIONS[action], reviewer_id, notes, now)

            if delete_message and report.message_id is not None:
                message = db.get(ChatMessage, report.message_id)
                if message is not None:
                    deleted_message_id = message.id
                    self.moderation.remove_message(
                        db, message, reviewer_id,
                        notes or f"Deleted on review of report {report.id}",
                        extra_metadata={"report_id": report.id},
                    )
                    actions_performed.append("message_deleted")

            target_id = report.reported_user_id
            if mute_user and target_id is not None and target_id != reviewer_id:
                membership = find_membership(db, report.room_id, target_id)
                if membership is not None:
                    duration = mute_duration or self.settings.review_default_mute_minutes
                    until = minutes_from(now, duration)
                    membership.mute(until, reviewer_id)
                    self.moderation.record_action(
                        db, report.room_id, ACTION_MUTE_USER, target_id,
                        moderator_id=reviewer_id,
                        reason=notes or f"Muted on review of report {report.id}",
                        metadata={
                            "duration_minutes": duration,
                            "muted_until": to_iso(until),
                            "report_id": report.id,
                        },
                    )
                    mute_event = UserMuted(
                        timestamp=now,
                        room_id=report.room_id,
                        target_id=target_id,
                        actor_id=reviewer_id,
                        duration_minutes=duration,
                        reason=notes,
                        until=to_iso(until),
                    )
                    actions_performed.append("user_muted")

        if deleted_message_id is not None:
            self.moderation.after_message_removed(report.room_id, deleted_message_id, reviewer_id, notes)
        if mute_event is not None:
            self.cache.invalidate_presence(report.room_id, mute_event.target_id)
            publish_to_room(self.publisher, report.room_id, mute_event)

        logger.info(
            f"Report {report.id} reviewed by user {reviewer_id}: {action}",
            extra={"event_type": "report_reviewed", "report_id": report.id,
                   "actions_performed": actions_performed}
        )

        return Result.success({
            "report": report.to_dict(),
            "action": action,
            "actions_performed": actions_performed,
        })

    # =========================================================================
    # Queries
    # =========================================================================

    def _authorize_scope(self, db: Session, room_id: Optional[int], actor_id: int) -> Result:
        """Room moderators see a room; only admins see every room"""
        if room_id is not None:
            return self.moderation.authorize(db, room_id, actor_id)
        actor = find_user(db, actor_id)
        if actor is None or not actor.has_role(ADMIN_ROLES):
            return not_authorized("You are not authorized to view all reports")
        return Result.success(actor)

    def get_reports(
        self,
        db: Session,
        actor_id: int,
        room_id: Optional[int] = None,
        status: Optional[str] = None,
        report_type: Optional[str] = None,
        reported_user_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Result:
        authorized = self._authorize_scope(db, room_id, actor_id)
        if not authorized.ok:
            return authorized

        errors = []
        if status is not None:
            errors += Validator.validate_enum(status, REPORT_STATUSES, "status")
        if report_type is not None:
            errors += Validator.validate_enum(report_type, REPORT_TYPES, "report_type")
        if errors:
            return validation_failed("Invalid report filter", errors)

        conditions = []
        if room_id is not None:
            conditions.append(ChatReport.room_id == room_id)
        if status:
            conditions.append(ChatReport.status == status)
        if report_type:
            conditions.append(ChatReport.report_type == report_type)
        if reported_user_id:
            conditions.append(ChatReport.reported_user_id == reported_user_id)

        return Result.success(self._paginate(db, conditions, page, per_page))

    def get_my_reports(self, db: Session, reporter_id: int, page: int = 1, per_page: int = 20) -> Result:
        return Result.success(self._paginate(db, [ChatReport.reporter_id == reporter_id], page, per_page))

    def _paginate(self, db: Session, conditions, page: int, per_page: int) -> Dict:
        page = max(1, page)
        per_page = max(1, min(per_page, 100))
        total = db.execute(select(func.count(ChatReport.id)).where(*conditions)).scalar_one()
        reports = db.execute(
            select(ChatReport)
            .where(*conditions)
            .order_by(ChatReport.created_at.desc(), ChatReport.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).scalars().all()
        return {
            "reports": [report.to_dict() for report in reports],
            "pagination": page_info(total, page, per_page),
        }

    def get_report_stats(self, db: Session, actor_id: int, room_id: Optional[int] = None, days: int = 7) -> Result:
        authorized = self._authorize_scope(db, room_id, actor_id)
        if not authorized.ok:
            return authorized

        since = self.clock.now() - timedelta(days=days)
        query = select(ChatReport).where(ChatReport.created_at >= since)
        if room_id is not None:
            query = query.where(ChatReport.room_id == room_id)
        reports = db.execute(query).scalars().all()

        statuses = Counter(report.status for report in reports)
        severity_breakdown = {"high": 0, "medium": 0, "low": 0}
        for report in reports:
            severity_breakdown[REPORT_SEVERITY.get(report.report_type, "low")] += 1

        return Result.success({
            "total_reports": len(reports),
            "pending_reports": statuses.get(STATUS_PENDING, 0),
            "reviewed_reports": statuses.get(STATUS_REVIEWED, 0),
            "resolved_reports": statuses.get(STATUS_RESOLVED, 0),
            "dismissed_reports": statuses.get(STATUS_DISMISSED, 0),
            "report_types": dict(Counter(report.report_type for report in reports)),
            "severity_breakdown": severity_breakdown,
            "top_reporters": self._top_users(db, Counter(report.reporter_id for report in reports)),
            "top_reported_users": self._top_users(
                db, Counter(r.reported_user_id for r in reports if r.reported_user_id is not None)
            ),
            "content_filter": self.content_filter.get_filter_stats(db, room_id, days),
            "period_days": days,
        })

    @staticmethod
    def _top_users(db: Session, counts: Counter, limit: int = 5):
        top = counts.most_common(limit)
        names = dict(db.execute(
            select(User.id, User.username).where(User.id.in_([user_id for user_id, _ in top]))
        ).all()) if top else {}
        return [
            {"user_id": user_id, "username": names.get(user_id, "Unknown"), "report_count": count}
            for user_id, count in top
        ]
