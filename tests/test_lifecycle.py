"""Tests for the ready queue and the per-chat polisher context."""

import pytest

from prose_polisher.config import Settings
from prose_polisher.host import HOST_ID_PREFIX
from prose_polisher.lifecycle import PolisherContext, Readiness, ReadyQueue

SHIVER_OPTIONS = {
    "a chill settled into her bones.",
    "her skin prickled.",
    "a cold thread tightened along her back.",
    "her breath caught.",
}

BEGAN_TO = {
    "id": "DYN_1700000000000_abcde",
    "scriptName": "Began To",
    "findRegex": r"began to (\w+)",
    "replaceString": "started to $1",
}


class TestReadyQueue:
    def test_queues_until_ready(self):
        queue = ReadyQueue()
        ran = []
        queue.submit(lambda: ran.append(1))
        queue.submit(lambda: ran.append(2))
        assert ran == []
        assert len(queue) == 2
        assert queue.mark_ready() == 2
        assert ran == [1, 2]
        assert queue.state is Readiness.READY

    def test_runs_immediately_when_ready(self):
        queue = ReadyQueue()
        queue.mark_ready()
        ran = []
        queue.submit(lambda: ran.append(1))
        assert ran == [1]

    def test_failing_task_does_not_stop_drain(self):
        queue = ReadyQueue()
        ran = []
        queue.submit(lambda: 1 / 0)
        queue.submit(lambda: ran.append(1))
        queue.mark_ready()
        assert ran == [1]

    def test_cancel(self):
        queue = ReadyQueue()
        queue.submit(lambda: None)
        assert queue.cancel() == 1
        assert not queue.is_ready
        assert len(queue) == 0

    def test_discard_pending_keeps_state(self):
        queue = ReadyQueue()
        ran = []
        queue.submit(lambda: ran.append(1))
        assert queue.discard_pending() == 1
        assert queue.state is Readiness.NOT_READY
        assert queue.mark_ready() == 0
        queue.submit(lambda: ran.append(2))
        assert ran == [2]


@pytest.fixture
def context():
    ctx = PolisherContext(Settings(leaderboard_update_cycle=1, dynamic_rules=[BEGAN_TO]))
    ctx.mark_ready()
    return ctx


class TestPolish:
    def test_bundled_rule_rewrites(self, context):
        for _ in range(10):
            assert context.polish("A shiver ran down her spine.") in SHIVER_OPTIONS

    def test_dynamic_rule_from_settings(self, context):
        assert context.polish("He began to smile.") == "He started to smile."

    def test_disabled_returns_input(self):
        ctx = PolisherContext(Settings(enabled=False))
        assert ctx.polish("A shiver ran down her spine.") == "A shiver ran down her spine."

    def test_custom_static_rules(self):
        ctx = PolisherContext(static_rules=[{"scriptName": "Ozone", "findRegex": "ozone", "replaceString": "rain"}])
        assert ctx.polish("The smell of ozone.") == "The smell of rain."

    def test_rule_edit_takes_effect(self, context):
        context.rules.update_rule(BEGAN_TO["id"], {"replaceString": "set out to $1"})
        assert context.polish("He began to smile.") == "He set out to smile."


class TestMessages:
    def test_messages_before_ready_are_deferred(self):
        ctx = PolisherContext(Settings())
        outcome = ctx.on_message_rendered(1, "Her eyes sparkled.")
        assert not outcome.processed
        assert ctx.analyzer.total_ai_messages == 0
        ctx.mark_ready()
        assert ctx.analyzer.total_ai_messages == 1

    def test_user_messages_ignored(self, context):
        assert not context.on_message_rendered(1, "Her eyes sparkled.", is_user=True).processed
        assert len(context.analyzer.tracker) == 0

    def test_ai_message_recorded(self, context):
        assert context.on_message_rendered(1, "Her eyes sparkled.").processed
        assert "her eyes sparkled" in context.analyzer.get_leaderboard().remaining

    def test_chat_change_resets_analysis_only(self, context):
        context.on_message_rendered(1, "Her eyes sparkled.")
        context.on_chat_changed()
        assert len(context.analyzer.tracker) == 0
        assert context.analyzer.total_ai_messages == 0
        assert context.rules.get(BEGAN_TO["id"]) is not None

    def test_chat_change_drops_deferred_messages(self):
        ctx = PolisherContext(Settings())
        ctx.on_message_rendered(1, "Old chat phrase here.")
        ctx.on_chat_changed()
        ctx.mark_ready()
        assert "old chat" not in ctx.analyzer.tracker
        assert ctx.analyzer.total_ai_messages == 0
        assert ctx.on_message_rendered(2, "New chat phrase here.").processed

    def test_close_drops_pending(self):
        ctx = PolisherContext(Settings())
        ctx.on_message_rendered(1, "Her eyes sparkled.")
        ctx.close()
        ctx.mark_ready()
        assert ctx.analyzer.total_ai_messages == 0


class TestSettings:
    def test_from_settings_blob(self):
        ctx = PolisherContext.from_settings_blob({
            "dynamicTriggerCount": 4,
            "dynamicRules": [BEGAN_TO],
            "customHostKey": "kept",
        })
        assert ctx.settings.dynamic_trigger_count == 4
        assert ctx.rules.get(BEGAN_TO["id"]) is not None

    def test_malformed_stored_rule_skipped(self):
        ctx = PolisherContext.from_settings_blob({
            "dynamicRules": [{"scriptName": "a", "findRegex": "b", "minDepth": "deep"}, BEGAN_TO],
        })
        assert [r.id for r in ctx.rules.all_rules() if not r.is_static] == [BEGAN_TO["id"]]
        ctx.mark_ready()
        assert ctx.polish("He began to smile.") == "He started to smile."

    def test_settings_blob_includes_rules_and_unknown_keys(self):
        ctx = PolisherContext.from_settings_blob({"customHostKey": "kept"})
        rule = ctx.rules.create_rule({"scriptName": "New", "findRegex": "new"})
        blob = ctx.settings_blob()
        assert blob["customHostKey"] == "kept"
        assert [r["id"] for r in blob["dynamicRules"]] == [rule.id]
        assert blob["isStaticEnabled"] is True

    def test_update_settings(self, context):
        context.update_settings(Settings(is_dynamic_enabled=False))
        assert context.polish("He began to smile.") == "He began to smile."
        assert context.analyzer.settings.is_dynamic_enabled is False

    def test_publish(self, context):
        host = [{"id": "user-1", "scriptName": "Mine", "findRegex": "x"}]
        result = context.publish(host)
        assert result[0] == host[0]
        assert HOST_ID_PREFIX + BEGAN_TO["id"] in [e["id"] for e in result]
        assert len(result) == 1 + len(context.active_rules())


def chat(count: int) -> list[dict]:
    return [{"mes": "The  smell of ozone.  ", "is_user": False, "name": f"msg {i}"} for i in range(count)]


class TestHistoryCleanup:
    @pytest.fixture
    def ozone_context(self):
        return PolisherContext(static_rules=[{"scriptName": "Ozone", "findRegex": "ozone", "replaceString": "rain"}])

    def test_older_messages_rewritten(self, ozone_context):
        messages = chat(4)
        cleaned = ozone_context.cleanup_history(messages)
        assert [m["mes"] for m in cleaned] == [
            "The smell of rain.",
            "The smell of rain.",
            "The  smell of ozone.  ",
            "The  smell of ozone.  ",
        ]
        assert cleaned[0]["name"] == "msg 0"
        assert messages == chat(4)

    @pytest.mark.parametrize("min_age, rewritten", [(0, 3), (1, 2), (3, 0), (5, 0)])
    def test_min_age(self, ozone_context, min_age, rewritten):
        cleaned = ozone_context.cleanup_history(chat(3), min_age=min_age)
        assert sum(m["mes"] == "The smell of rain." for m in cleaned) == rewritten

    def test_disabled_leaves_history(self):
        ctx = PolisherContext(
            Settings(enabled=False),
            static_rules=[{"scriptName": "Ozone", "findRegex": "ozone", "replaceString": "rain"}],
        )
        assert ctx.cleanup_history(chat(4), min_age=0) == chat(4)

    def test_messages_without_text_kept(self, ozone_context):
        messages = [{"mes": ""}, {"is_user": True}, {"mes": None}] + chat(2)
        cleaned = ozone_context.cleanup_history(messages)
        assert cleaned[:3] == [{"mes": ""}, {"is_user": True}, {"mes": None}]
