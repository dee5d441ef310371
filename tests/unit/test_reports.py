import pytest
from sqlalchemy import select

from app.core.errors import ErrorKind
from app.models.chat_messages import ChatMessage
from app.models.chat_reports import ChatReport
from app.models.moderation_actions import ACTOR_SYSTEM, ModerationAction
from app.services.report_service import AUTO_RESOLVE_NOTE


@pytest.fixture
def message(db, services, room, bob, joined):
    """A text message posted by bob"""
    result = services.messages.send_message(db, room["id"], bob.id, "buy my stuff")
    assert result.ok
    return result.value["message"]


def report(services, db, room, message, user, report_type="spam", reason=None):
    return services.reports.report_message(db, room["id"], message["id"], user.id, report_type, reason)


class TestReportMessage:
    """Filing reports"""

    def test_report_is_stored(self, db, services, room, message, bob, carol):
        result = report(services, db, room, message, carol, "harassment", "rude")

        assert result.ok
        assert result.value["auto_moderated"] is False
        stored = result.value["report"]
        assert stored["status"] == "pending"
        assert stored["reported_user_id"] == bob.id
        assert stored["metadata"]["message_content"] == "buy my stuff"

    def test_cannot_report_own_message(self, db, services, room, message, bob):
        result = report(services, db, room, message, bob)

        assert result.error.kind == ErrorKind.AUTHORIZATION
        assert result.error.code == "self_report"

    def test_duplicate_report(self, db, services, room, message, carol):
        first = report(services, db, room, message, carol)

        result = report(services, db, room, message, carol, "other")

        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.code == "duplicate_report"
        assert result.error.details["existing_report_id"] == first.value["report_id"]

    def test_unknown_report_type(self, db, services, room, message, carol):
        assert report(services, db, room, message, carol, "rude").error.kind == ErrorKind.VALIDATION

    def test_unknown_message(self, db, services, room, carol):
        result = report(services, db, room, {"id": 999}, carol)

        assert result.error.code == "message_not_found"


class TestAutoModeration:
    """Threshold auto-moderation"""

    def test_third_report_deletes_message(self, db, services, publisher, room, message, bob, carol, dave, admin):
        report(services, db, room, message, carol)
        second = report(services, db, room, message, dave)
        assert second.value["auto_moderated"] is False

        result = report(services, db, room, message, admin, "harassment")

        assert result.value["auto_moderated"] is True
        assert db.get(ChatMessage, message["id"]) is None

        reports = db.execute(select(ChatReport).order_by(ChatReport.id)).scalars().all()
        assert [r.status for r in reports] == ["resolved"] * 3
        assert all(r.reviewer_type == ACTOR_SYSTEM and r.reviewed_by is None for r in reports)
        assert all(r.message_id is None for r in reports)
        assert reports[0].review_notes == AUTO_RESOLVE_NOTE

        action = db.execute(select(ModerationAction)).scalar_one()
        assert action.action_type == "delete_message"
        assert action.moderator_id is None
        assert action.target_user_id == bob.id
        assert action.details["report_count"] == 3
        assert action.details["original_message"] == "buy my stuff"

        deleted = publisher.of_type("MessageDeleted")
        assert len(deleted) == 1
        assert deleted[0].automated is True
        assert deleted[0].actor_id is None

    def test_reviewed_reports_do_not_count(self, db, services, room, message, alice, carol, dave, admin):
        first = report(services, db, room, message, carol)
        services.reports.review_report(db, first.value["report_id"], alice.id, "dismiss")
        report(services, db, room, message, dave)

        result = report(services, db, room, message, admin)

        assert result.value["auto_moderated"] is False
        assert db.get(ChatMessage, message["id"]) is not None

    def test_deleted_message_cannot_be_reported(self, db, services, room, message, carol, dave, admin, alice):
        for reporter in (carol, dave, admin):
            report(services, db, room, message, reporter)

        assert report(services, db, room, message, alice).error.code == "message_not_found"


class TestReviewReport:
    """Moderator review"""

    def test_resolve_with_cascades(self, db, services, publisher, room, message, alice, bob, carol):
        filed = report(services, db, room, message, carol)

        result = services.reports.review_report(
            db, filed.value["report_id"], alice.id, "resolve",
            notes="confirmed", delete_message=True, mute_user=True,
        )

        assert result.ok
        assert result.value["actions_performed"] == ["message_deleted", "user_muted"]
        reviewed = result.value["report"]
        assert reviewed["status"] == "resolved"
        assert reviewed["reviewed_by"] == alice.id
        assert reviewed["message_id"] is None
        assert db.get(ChatMessage, message["id"]) is None

        status = services.moderation.get_user_moderation_status(db, room["id"], alice.id, bob.id).value
        assert status["muted_until"] == "2024-05-01T13:00:00"
        assert publisher.of_type("UserMuted")[-1].actor_id == alice.id

    def test_closed_report_cannot_be_reviewed_again(self, db, services, room, message, alice, carol):
        filed = report(services, db, room, message, carol)
        services.reports.review_report(db, filed.value["report_id"], alice.id, "dismiss")

        result = services.reports.review_report(db, filed.value["report_id"], alice.id, "resolve")

        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.code == "report_closed"

    def test_escalated_report_stays_open(self, db, services, room, message, alice, carol):
        filed = report(services, db, room, message, carol)

        escalated = services.reports.review_report(db, filed.value["report_id"], alice.id, "escalate")
        resolved = services.reports.review_report(db, filed.value["report_id"], alice.id, "resolve")

        assert escalated.value["report"]["status"] == "reviewed"
        assert escalated.value["actions_performed"] == []
        assert resolved.value["report"]["status"] == "resolved"

    def test_only_moderators_review(self, db, services, room, message, carol, dave):
        filed = report(services, db, room, message, carol)

        result = services.reports.review_report(db, filed.value["report_id"], dave.id, "resolve")

        assert result.error.kind == ErrorKind.AUTHORIZATION

    def test_invalid_action(self, db, services, room, message, alice, carol):
        filed = report(services, db, room, message, carol)

        result = services.reports.review_report(db, filed.value["report_id"], alice.id, "ignore")

        assert result.error.kind == ErrorKind.VALIDATION


class TestReportQueries:
    """Report listing and statistics"""

    def test_room_moderator_sees_room_reports(self, db, services, room, message, alice, bob, carol):
        report(services, db, room, message, carol)

        listed = services.reports.get_reports(db, alice.id, room_id=room["id"], status="pending")

        assert listed.value["pagination"]["total"] == 1
        assert services.reports.get_reports(db, bob.id, room_id=room["id"]).error.kind == ErrorKind.AUTHORIZATION

    def test_only_admins_see_all_rooms(self, db, services, room, message, alice, admin, carol):
        report(services, db, room, message, carol)

        assert services.reports.get_reports(db, alice.id).error.kind == ErrorKind.AUTHORIZATION
        assert len(services.reports.get_reports(db, admin.id).value["reports"]) == 1

    def test_filter_validation(self, db, services, room, alice):
        result = services.reports.get_reports(db, alice.id, room_id=room["id"], status="open")

        assert result.error.kind == ErrorKind.VALIDATION

    def test_my_reports(self, db, services, room, message, carol, dave):
        report(services, db, room, message, carol)

        assert services.reports.get_my_reports(db, carol.id).value["pagination"]["total"] == 1
        assert services.reports.get_my_reports(db, dave.id).value["reports"] == []

    def test_report_stats(self, db, services, room, message, alice, bob, carol, dave):
        report(services, db, room, message, carol, "spam")
        report(services, db, room, message, dave, "harassment")

        stats = services.reports.get_report_stats(db, alice.id, room_id=room["id"]).value

        assert stats["total_reports"] == 2
        assert stats["pending_reports"] == 2
        assert stats["report_types"] == {"spam": 1, "harassment": 1}
        assert stats["severity_breakdown"] == {"high": 0, "medium": 1, "low": 1}
        assert stats["top_reported_users"] == [{"user_id": bob.id, "username": "bob", "report_count": 2}]
        assert stats["content_filter"]["total_actions"] == 0
