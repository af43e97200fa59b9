"""
Tests for the per-conversation chat window controller
"""
from datetime import timedelta

import pytest

from marketchat.errors import Unknown
from marketchat.repositories.memory import InMemoryProfileStore
from marketchat.services.attachment_uploader import UploadSource
from marketchat.services.chat_window import ChatWindow
from marketchat.services.presence_tracker import PresenceTracker, utcnow
from marketchat.utils.realtime_bus import message_channel

from conftest import ALICE, BOB, CAROL, run


class UnreachableProfiles(InMemoryProfileStore):

    async def get(self, user_id):
        raise Unknown("profile lookup timed out")


def make_window(context, user_id=ALICE, counterpart_id=BOB, **kwargs):
    kwargs.setdefault("presence", context.presence)
    return ChatWindow(
        user_id,
        counterpart_id,
        "Bob Martin",
        directory=context.directory,
        messages=context.messages,
        uploader=context.uploader,
        notifier=context.notifier,
        **kwargs,
    )


@pytest.mark.unit
class TestMount:

    def test_loads_history_and_marks_read(self, context, profiles):
        async def scenario():
            cid = await context.directory.get_or_create(BOB, ALICE)
            await context.messages.send(cid, BOB, ALICE, "Bonjour")
            async with make_window(context) as window:
                return window, await context.messages.count_unread(ALICE)

        window, unread = run(scenario())
        assert window.conversation_id
        assert [m.content.text for m in window.messages] == ["Bonjour"]
        assert window.messages[0].read is True
        assert unread == 0

    def test_unmount_releases_subscription(self, context, backend, profiles):
        async def scenario():
            async with make_window(context) as window:
                assert window.mounted is True
                assert backend.bus.subscriber_count(message_channel(ALICE)) == 1
            return window

        window = run(scenario())
        assert window.mounted is False
        assert backend.bus.subscriber_count(message_channel(ALICE)) == 0

    def test_unprovisioned_disables_window(self, unprovisioned_context, unprovisioned_backend):
        async def scenario():
            window = make_window(unprovisioned_context)
            await window.mount()
            return window

        window = run(scenario())
        assert window.available is False
        assert window.mounted is False
        assert unprovisioned_context.notifier.errors == []
        assert unprovisioned_backend.bus.subscriber_count(message_channel(ALICE)) == 0

    def test_last_seen_fetched_when_offline(self, context, profiles):
        run(profiles.set_presence(BOB, False, utcnow() - timedelta(minutes=5)))

        async def scenario():
            async with make_window(context, is_online=False) as window:
                return window.last_activity

        assert run(scenario()) == "5 min ago"

    def test_last_seen_skipped_when_online(self, context, profiles):
        run(profiles.set_presence(BOB, True, utcnow() - timedelta(minutes=5)))

        async def scenario():
            async with make_window(context, is_online=True) as window:
                return window.last_activity

        assert run(scenario()) is None

    def test_last_seen_failure_keeps_window_live(self, context, profiles):
        async def scenario():
            async with make_window(context, presence=PresenceTracker(UnreachableProfiles())) as window:
                mounted = window.mounted
                await context.messages.send(window.conversation_id, BOB, ALICE, "Toujours là ?")
                return window, mounted

        window, mounted = run(scenario())
        assert mounted is True
        assert window.last_activity is None
        assert [m.content.text for m in window.messages] == ["Toujours là ?"]
        assert context.notifier.errors == []

    def test_message_sent_during_first_page_kept(self, context, profiles, monkeypatch):
        first_page = context.messages.list

        async def list_with_late_arrival(conversation_id, *args):
            page = await first_page(conversation_id, *args)
            await context.messages.send(conversation_id, BOB, ALICE, "arrivé pendant le chargement")
            return page

        async def scenario():
            cid = await context.directory.get_or_create(BOB, ALICE)
            await context.messages.send(cid, BOB, ALICE, "Bonjour")
            monkeypatch.setattr(context.messages, "list", list_with_late_arrival)
            async with make_window(context) as window:
                return [m.content.text for m in window.messages]

        assert run(scenario()) == ["Bonjour", "arrivé pendant le chargement"]


@pytest.mark.unit
class TestLiveMessages:

    def test_counterpart_message_appended(self, context, profiles):
        scrolls = []

        async def scenario():
            async with make_window(context, on_scroll=lambda: scrolls.append(1)) as window:
                scrolls.clear()
                await context.messages.send(window.conversation_id, BOB, ALICE, "Vous êtes là ?")
                return window

        window = run(scenario())
        assert [m.content.text for m in window.messages] == ["Vous êtes là ?"]
        assert window.messages[0].read is True
        assert scrolls

    def test_other_sender_ignored(self, context, profiles):
        async def scenario():
            other = await context.directory.get_or_create(CAROL, ALICE)
            async with make_window(context) as window:
                await context.messages.send(other, CAROL, ALICE, "wrong window")
                return window

        window = run(scenario())
        assert window.messages == []

    def test_other_conversation_with_counterpart_ignored(self, context, profiles):
        async def scenario():
            async with make_window(context) as window:
                await context.messages.send("stale-conversation", BOB, ALICE, "ancienne conversation")
                return window

        window = run(scenario())
        assert window.messages == []


@pytest.mark.unit
class TestSend:

    def test_send_text_clears_draft(self, context, profiles):
        async def scenario():
            async with make_window(context) as window:
                window.draft = "Bonjour"
                message = await window.send_text()
                return window, message

        window, message = run(scenario())
        assert message.content.text == "Bonjour"
        assert window.draft == ""
        assert [m.id for m in window.messages] == [message.id]

    def test_blank_is_noop(self, context, backend, profiles):
        async def scenario():
            async with make_window(context) as window:
                window.draft = "   "
                return await window.send_text()

        assert run(scenario()) is None
        assert backend.messages.insert_calls == 0

    def test_failure_keeps_draft_and_notifies_once(self, context, profiles):
        async def scenario():
            async with make_window(context) as window:
                window.draft = "x" * 4001
                return window, await window.send_text()

        window, message = run(scenario())
        assert message is None
        assert window.draft == "x" * 4001
        assert len(context.notifier.errors) == 1

    def test_send_while_unavailable_is_reported(self, context, backend, profiles):
        async def scenario():
            async with make_window(context) as window:
                backend.messages.provisioned = False
                return window, await window.send_text("Bonjour")

        window, message = run(scenario())
        assert message is None
        assert window.available is False
        assert context.notifier.errors == ["Messaging is not available yet."]

    def test_oversized_attachment_never_uploaded(self, context, backend, profiles):
        big = UploadSource(b"x" * (context.uploader.max_bytes + 1), "plan.pdf", "application/pdf")

        async def scenario():
            async with make_window(context) as window:
                return await window.send_attachment(big)

        assert run(scenario()) is None
        assert backend.objects.put_calls == 0
        assert backend.messages.insert_calls == 0
        assert len(context.notifier.errors) == 1

    def test_image_attachment_sent(self, context, backend, profiles):
        async def scenario():
            async with make_window(context) as window:
                return window, await window.send_attachment("data:image/png;base64,aGVsbG8=")

        window, message = run(scenario())
        assert message.content.kind == "image"
        assert backend.objects.paths()[0].startswith(f"chat/{window.conversation_id}/")


@pytest.mark.unit
class TestLoadOlder:

    def test_prepends_older_page(self, context, profiles):
        async def scenario():
            cid = await context.directory.get_or_create(ALICE, BOB)
            for i in range(5):
                await context.messages.send(cid, BOB, ALICE, f"m{i}")
            async with make_window(context, page_size=2) as window:
                first = [m.content.text for m in window.messages]
                added = await window.load_older()
                return first, added, [m.content.text for m in window.messages]

        first, added, after = run(scenario())
        assert first == ["m3", "m4"]
        assert added == 2
        assert after == ["m1", "m2", "m3", "m4"]

    def test_stops_when_history_exhausted(self, context, profiles):
        async def scenario():
            cid = await context.directory.get_or_create(ALICE, BOB)
            await context.messages.send(cid, BOB, ALICE, "only")
            async with make_window(context, page_size=2) as window:
                return window.has_more, await window.load_older()

        assert run(scenario()) == (False, 0)
