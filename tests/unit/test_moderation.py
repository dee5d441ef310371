from sqlalchemy import select

from app.core.errors import ErrorKind
from app.models.chat_messages import ChatMessage
from app.models.moderation_actions import ACTOR_USER, ModerationAction


def post(services, db, room, user, body):
    result = services.messages.send_message(db, room["id"], user.id, body)
    assert result.ok
    return result.value["message"]


def audit(db):
    return db.execute(select(ModerationAction).order_by(ModerationAction.id)).scalars().all()


class TestMuteAndBan:
    """Mute/ban lifecycle"""

    def test_only_moderators_can_mute(self, db, services, room, bob, carol, joined):
        services.presence.join(db, room["id"], carol.id)

        result = services.moderation.mute_user(db, room["id"], bob.id, carol.id, 10)

        assert result.error.kind == ErrorKind.AUTHORIZATION
        assert result.error.code == "authorization_error"

    def test_cannot_mute_yourself(self, db, services, room, alice):
        result = services.moderation.mute_user(db, room["id"], alice.id, alice.id, 10)

        assert result.error.code == "self_mute"

    def test_cannot_ban_yourself(self, db, services, publisher, room, alice):
        publisher.clear()

        result = services.moderation.ban_user(db, room["id"], alice.id, alice.id, 60)

        assert result.error.kind == ErrorKind.AUTHORIZATION
        assert result.error.code == "self_ban"
        assert audit(db) == []
        assert publisher.names() == []

    def test_duration_must_be_in_range(self, db, services, room, alice, bob, joined):
        too_long = services.moderation.mute_user(db, room["id"], alice.id, bob.id, 10081)
        zero = services.moderation.mute_user(db, room["id"], alice.id, bob.id, 0)

        assert too_long.error.kind == ErrorKind.VALIDATION
        assert too_long.error.validation_errors[0].field == "duration"
        assert zero.error.kind == ErrorKind.VALIDATION

    def test_target_must_be_a_member(self, db, services, room, alice, carol):
        result = services.moderation.mute_user(db, room["id"], alice.id, carol.id, 10)

        assert result.error.code == "membership_not_found"

    def test_mute_is_audited_and_published(self, db, services, publisher, room, alice, bob, joined):
        publisher.clear()

        result = services.moderation.mute_user(db, room["id"], alice.id, bob.id, 30, "calm down")

        assert result.value["muted_until"] == "2024-05-01T12:30:00"
        assert result.value["permanent"] is False

        action = audit(db)[-1]
        assert action.action_type == "mute_user"
        assert action.actor_type == ACTOR_USER
        assert action.moderator_id == alice.id
        assert action.target_user_id == bob.id
        assert action.reason == "calm down"
        assert action.details["duration_minutes"] == 30

        muted = publisher.of_type("UserMuted")
        assert len(muted) == 1
        assert muted[0].automated is False
        assert muted[0].until == "2024-05-01T12:30:00"

    def test_unmute(self, db, services, room, alice, bob, joined):
        services.moderation.mute_user(db, room["id"], alice.id, bob.id)

        assert services.moderation.unmute_user(db, room["id"], alice.id, bob.id, "ok now").ok
        assert services.messages.send_message(db, room["id"], bob.id, "good morning").ok
        assert audit(db)[-1].action_type == "unmute_user"

    def test_unmute_requires_active_mute(self, db, services, clock, room, alice, bob, joined):
        services.moderation.mute_user(db, room["id"], alice.id, bob.id, 5)
        clock.advance(minutes=5)

        result = services.moderation.unmute_user(db, room["id"], alice.id, bob.id)

        assert result.error.kind == ErrorKind.POLICY
        assert result.error.code == "not_muted"

    def test_ban_takes_user_offline_until_unbanned(self, db, services, publisher, room, alice, bob, joined):
        result = services.moderation.ban_user(db, room["id"], alice.id, bob.id, reason="abuse")

        assert result.value["permanent"] is True
        assert result.value["banned_until"] is None
        online = services.presence.get_online_users(db, room["id"]).value
        assert [user["username"] for user in online["online_users"]] == ["alice"]
        assert services.presence.join(db, room["id"], bob.id).error.code == "user_banned"

        assert services.moderation.unban_user(db, room["id"], alice.id, bob.id).ok
        assert services.presence.join(db, room["id"], bob.id).value["rejoined"] is True
        assert publisher.names().count("UserUnbanned") == 1

    def test_unban_requires_active_ban(self, db, services, publisher, room, alice, bob, joined):
        publisher.clear()

        result = services.moderation.unban_user(db, room["id"], alice.id, bob.id)

        assert result.error.code == "not_banned"
        assert audit(db) == []
        assert publisher.names() == []

    def test_unmute_without_mute_changes_nothing(self, db, services, publisher, room, alice, bob, joined):
        publisher.clear()

        result = services.moderation.unmute_user(db, room["id"], alice.id, bob.id)

        assert result.error.code == "not_muted"
        assert audit(db) == []
        assert publisher.names() == []


class TestDeleteMessage:
    """Message deletion"""

    def test_author_can_delete(self, db, services, publisher, room, bob, joined):
        message = post(services, db, room, bob, "good morning")

        result = services.moderation.delete_message(db, room["id"], bob.id, message["id"], "typo")

        assert result.ok
        assert db.get(ChatMessage, message["id"]) is None
        deleted = publisher.of_type("MessageDeleted")[-1]
        assert deleted.message_id == message["id"]
        assert deleted.automated is False

    def test_other_member_cannot_delete(self, db, services, room, bob, carol, joined):
        message = post(services, db, room, bob, "good morning")

        result = services.moderation.delete_message(db, room["id"], carol.id, message["id"])

        assert result.error.kind == ErrorKind.AUTHORIZATION
        assert db.get(ChatMessage, message["id"]) is not None

    def test_moderator_delete_keeps_audit_copy(self, db, services, room, alice, bob, joined):
        message = post(services, db, room, bob, "good morning")

        services.moderation.delete_message(db, room["id"], alice.id, message["id"], "off topic")

        action = audit(db)[-1]
        assert action.action_type == "delete_message"
        assert action.message_id is None
        assert action.target_user_id == bob.id
        assert action.details["original_message"] == "good morning"
        assert action.details["message_id"] == message["id"]

    def test_message_from_another_room(self, db, services, room, alice):
        other = services.rooms.create_room(db, alice.id, "random").value["room"]
        message = post(services, db, other, alice, "good morning")

        result = services.moderation.delete_message(db, room["id"], alice.id, message["id"])

        assert result.error.code == "message_not_found"


class TestModerationQueries:
    """Audit history and membership status"""

    def test_actions_filters(self, db, services, room, alice, bob, carol, joined):
        services.presence.join(db, room["id"], carol.id)
        services.moderation.mute_user(db, room["id"], alice.id, bob.id, 10)
        services.moderation.mute_user(db, room["id"], alice.id, carol.id, 10)
        services.moderation.ban_user(db, room["id"], alice.id, carol.id, 10)

        mutes = services.moderation.get_moderation_actions(db, room["id"], alice.id, action_type="mute_user").value
        carol_actions = services.moderation.get_moderation_actions(
            db, room["id"], alice.id, target_user_id=carol.id
        ).value
        paged = services.moderation.get_moderation_actions(db, room["id"], alice.id, page=2, per_page=2).value

        assert mutes["pagination"]["total"] == 2
        assert [a["action_type"] for a in carol_actions["actions"]] == ["ban_user", "mute_user"]
        assert len(paged["actions"]) == 1
        assert paged["pagination"]["has_more"] is False

    def test_actions_reject_unknown_type(self, db, services, room, alice):
        result = services.moderation.get_moderation_actions(db, room["id"], alice.id, action_type="kick")

        assert result.error.kind == ErrorKind.VALIDATION

    def test_actions_need_moderator(self, db, services, room, bob, joined):
        assert services.moderation.get_moderation_actions(db, room["id"], bob.id).error.kind == ErrorKind.AUTHORIZATION

    def test_status_visible_to_self_and_moderators(self, db, services, room, alice, bob, carol, joined):
        services.moderation.mute_user(db, room["id"], alice.id, bob.id, 10)

        own = services.moderation.get_user_moderation_status(db, room["id"], bob.id, bob.id)
        by_moderator = services.moderation.get_user_moderation_status(db, room["id"], alice.id, bob.id)
        by_stranger = services.moderation.get_user_moderation_status(db, room["id"], carol.id, bob.id)

        assert own.value["is_muted"] is True
        assert own.value["can_send_messages"] is False
        assert own.value["muted_until"] == "2024-05-01T12:10:00"
        assert len(by_moderator.value["recent_actions"]) == 1
        assert by_stranger.error.kind == ErrorKind.AUTHORIZATION


class TestCleanup:
    """Expired restriction cleanup"""

    def test_cleanup_clears_expired_flags(self, db, services, clock, room, alice, bob, carol, dave, joined):
        services.presence.join(db, room["id"], carol.id)
        services.presence.join(db, room["id"], dave.id)
        services.moderation.mute_user(db, room["id"], alice.id, bob.id, 10)
        services.moderation.ban_user(db, room["id"], alice.id, carol.id, 60)
        services.moderation.mute_user(db, room["id"], alice.id, dave.id)

        clock.advance(minutes=61)
        result = services.moderation.cleanup_expired(db)

        assert result == {"unmuted": 1, "unbanned": 1}
        remaining = services.moderation.list_active_restrictions(db, room["id"])
        assert [(r["user_id"], r["is_muted"], r["muted_until"]) for r in remaining] == [(dave.id, True, None)]

    def test_cleanup_with_nothing_expired(self, db, services, room, alice, bob, joined):
        services.moderation.mute_user(db, room["id"], alice.id, bob.id, 10)

        assert services.moderation.cleanup_expired(db) == {"unmuted": 0, "unbanned": 0}
