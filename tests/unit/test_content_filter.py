import pytest
from sqlalchemy import select

from app.models.chat_room_users import ChatRoomUser
from app.models.moderation_actions import ACTOR_SYSTEM, ModerationAction
from app.services.content_filter import ContentFilter
from app.services.word_policy import WordPolicy, WordRule


@pytest.fixture
def content_filter(services):
    return services.content_filter


class TestWordList:
    """Word list check"""

    def test_clean_message(self, content_filter):
        result = content_filter.check_content("good morning everyone")

        assert result.violations == []
        assert result.severity == "none"
        assert result.action_required is False
        assert result.filtered == "good morning everyone"

    def test_medium_word_is_replaced_but_allowed(self, content_filter):
        result = content_filter.check_content("you are Stupid")

        assert result.violations == [{"type": "inappropriate_word", "word": "stupid", "severity": "medium"}]
        assert result.filtered == "you are [filtered]"
        assert result.action_required is False

    def test_high_severity_word_requires_action(self, content_filter):
        result = content_filter.check_content("I hate it")

        assert result.severity == "high"
        assert result.action_required is True

    def test_three_violations_require_action(self, content_filter):
        result = content_filter.check_content("spam scam fake offer")

        assert len(result.violations) == 3
        assert result.severity == "low"
        assert result.action_required is True
        assert result.filtered == "**** **** fake offer"

    def test_word_without_replacement_is_left_as_written(self, content_filter):
        assert content_filter.check_content("that is fake").filtered == "that is fake"

    def test_custom_policy(self, services):
        policy = WordPolicy(rules=[WordRule(pattern="pineapple", severity="high", replacement="fruit")])
        custom = ContentFilter(services.cache, services.moderation, services.clock, services.settings, policy)

        result = custom.check_content("pineapple pizza")

        assert result.filtered == "fruit pizza"
        assert result.action_required is True
        assert custom.check_content("I hate it").violations == []

    def test_invalid_policy_severity(self):
        with pytest.raises(ValueError):
            WordPolicy(rules=[WordRule(pattern="x", severity="extreme")])


class TestSpamHeuristics:
    """Spam heuristics"""

    def test_frequency_counts_current_message(self, content_filter, clock):
        counts = []
        for _ in range(6):
            counts.append(content_filter.check_message_frequency(1, 1))
            clock.advance(seconds=5)

        assert [c["message_count"] for c in counts] == [1, 2, 3, 4, 5, 6]
        assert [c["is_spam"] for c in counts] == [False] * 5 + [True]

    def test_frequency_window_slides(self, content_filter, clock):
        for _ in range(5):
            content_filter.check_message_frequency(1, 1)
            clock.advance(seconds=13)

        assert content_filter.check_message_frequency(1, 1)["message_count"] == 5

    def test_duplicates_normalise_case_and_whitespace(self, content_filter):
        first = content_filter.check_duplicate_messages("Hello there", 1, 1)
        second = content_filter.check_duplicate_messages("hello there ", 1, 1)
        third = content_filter.check_duplicate_messages("HELLO THERE", 1, 1)

        assert [first["is_spam"], second["is_spam"], third["is_spam"]] == [False, False, True]
        assert third["duplicate_count"] == 3

    def test_duplicates_expire(self, content_filter, clock):
        content_filter.check_duplicate_messages("hello there", 1, 1)
        content_filter.check_duplicate_messages("hello there", 1, 1)
        clock.advance(minutes=6)

        assert content_filter.check_duplicate_messages("hello there", 1, 1)["duplicate_count"] == 1

    def test_excessive_caps(self, content_filter):
        assert content_filter.check_excessive_caps("HELLO EVERYONE HERE")["is_spam"] is True
        assert content_filter.check_excessive_caps("Hello there, everyone")["is_spam"] is False
        # Too few letters to judge
        assert content_filter.check_excessive_caps("OK GO")["is_spam"] is False

    def test_character_repetition(self, content_filter):
        assert content_filter.check_character_repetition("aaaaaaaaaaaa")["is_spam"] is True
        assert content_filter.check_character_repetition("hello world!")["is_spam"] is False

    def test_url_spam(self, content_filter):
        many = "see https://a.example and https://b.example and https://c.example"
        assert content_filter.check_url_spam(many)["is_spam"] is True
        assert content_filter.check_url_spam("look at bit.ly/abc")["is_spam"] is True
        assert content_filter.check_url_spam("docs at https://docs.example")["is_spam"] is False

    def test_single_medium_signal_is_not_blocked(self, content_filter):
        result = content_filter.detect_spam("look at bit.ly/abc", 1, 1)

        assert result.severity == "medium"
        assert result.action_required is False

    def test_two_signals_are_blocked(self, content_filter):
        result = content_filter.detect_spam("LOOK AT BIT.LY/ABC RIGHT NOW", 1, 1)

        assert {v["type"] for v in result.violations} == {"excessive_caps", "url_spam"}
        assert result.action_required is True


class TestScreening:
    """Filter decisions with their audit trail"""

    def test_allowed_message_writes_nothing(self, db, content_filter, room, bob, joined):
        result = content_filter.screen(db, "good morning everyone", bob.id, room["id"])

        assert result.allowed is True
        assert result.actions_taken == []
        assert db.execute(select(ModerationAction)).scalars().all() == []

    def test_blocked_content_is_audited(self, db, content_filter, room, bob, joined):
        result = content_filter.screen(db, "I hate it", bob.id, room["id"])

        assert result.allowed is False
        assert result.actions_taken == ["message_blocked"]
        assert result.reason == "Message blocked: inappropriate content"

        action = db.execute(select(ModerationAction)).scalar_one()
        assert action.action_type == "content_filter"
        assert action.actor_type == ACTOR_SYSTEM
        assert action.moderator_id is None
        assert action.details["original_message"] == "I hate it"
        assert action.details["severity"] == "high"

    def test_high_frequency_spam_mutes_sender(self, db, content_filter, publisher, room, bob, joined, clock):
        for i in range(5):
            assert content_filter.screen(db, f"message number {i}", bob.id, room["id"]).allowed

        result = content_filter.screen(db, "message number 5", bob.id, room["id"])

        assert result.allowed is False
        assert result.actions_taken == ["spam_blocked", "user_auto_muted"]
        assert result.reason == "Message blocked: spam detected"

        membership = db.execute(
            select(ChatRoomUser).where(ChatRoomUser.room_id == room["id"], ChatRoomUser.user_id == bob.id)
        ).scalar_one()
        assert membership.is_muted_at(clock.now())
        assert membership.muted_by is None
        assert (membership.muted_until - clock.now()).total_seconds() == 600

        action_types = [a.action_type for a in db.execute(select(ModerationAction)).scalars()]
        assert sorted(action_types) == ["mute_user", "spam_detection"]

        muted = publisher.of_type("UserMuted")
        assert len(muted) == 1
        assert muted[0].automated is True
        assert muted[0].actor_id is None

    def test_auto_mute_needs_membership(self, db, content_filter, room, carol):
        for i in range(5):
            content_filter.screen(db, f"message number {i}", carol.id, room["id"])

        result = content_filter.screen(db, "message number 5", carol.id, room["id"])

        assert result.allowed is False
        assert result.actions_taken == ["spam_blocked"]

    def test_filter_stats(self, db, content_filter, room, bob, joined):
        content_filter.screen(db, "I hate it", bob.id, room["id"])
        content_filter.screen(db, "stupid idiot moron", bob.id, room["id"])

        stats = content_filter.get_filter_stats(db, room["id"])

        assert stats["total_actions"] == 2
        assert stats["content_filter_actions"] == 2
        assert stats["severity_breakdown"] == {"low": 0, "medium": 1, "high": 1}
        assert stats["top_violations"] == {"inappropriate_word": 4}
        assert stats["affected_users"] == 1
