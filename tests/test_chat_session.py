"""
Tests for the open-window registry, presence transitions and the unread badge
"""
import json

import pytest

from marketchat.schemas.chat import ActiveChat, Position
from marketchat.services.chat_session import SessionStorage
from marketchat.utils.realtime_bus import message_channel

from conftest import ALICE, BOB, CAROL, run


@pytest.fixture
def session(context, profiles):
    return context.session_for(ALICE)


def presence_writes(backend, user_id=ALICE):
    return [online for uid, online in backend.profiles.presence_writes if uid == user_id]


@pytest.mark.unit
class TestOpenClose:

    def test_open_cascades_windows(self, session, settings):
        ox, oy = settings.window_origin
        run(session.open(BOB, "Bob Martin"))
        second = run(session.open(CAROL, "Carol"))
        assert second.position == Position(x=ox + 30, y=oy + 30)
        assert [c.counterpart_id for c in session.chats] == [BOB, CAROL]

    def test_reopen_keeps_count_and_bumps_position(self, session):
        first = run(session.open(BOB, "Bob Martin"))
        again = run(session.open(BOB, "Bob Martin"))
        assert len(session.chats) == 1
        assert again.position == first.position.shifted(1, 1)

    def test_presence_on_first_open_and_last_close(self, session, backend):
        async def scenario():
            await session.open(BOB, "Bob Martin")
            await session.open(CAROL, "Carol")
            await session.close(BOB)
            await session.close(CAROL)

        run(scenario())
        assert presence_writes(backend) == [True, False]

    def test_close_absent_is_noop(self, session, backend):
        run(session.close(BOB))
        assert presence_writes(backend) == []
        assert session.chats == ()

    def test_minimize_all_single_offline_update(self, session, backend):
        async def scenario():
            await session.open(BOB, "Bob Martin")
            await session.open(CAROL, "Carol")
            await session.open("tg-4", "Demo provider")
            await session.minimize_all()

        run(scenario())
        assert session.chats == ()
        assert presence_writes(backend) == [True, False]

    def test_minimize_all_when_empty(self, session, backend):
        run(session.minimize_all())
        assert presence_writes(backend) == []

    def test_open_during_minimize_stays_online(self, session, backend, monkeypatch):
        async def scenario():
            await session.open(BOB, "Bob Martin")
            window = session.window_for(BOB)
            await window.mount()
            unmount = window.unmount

            async def unmount_then_open():
                await unmount()
                await session.open(CAROL, "Carol")

            monkeypatch.setattr(window, "unmount", unmount_then_open)
            await session.minimize_all()

        run(scenario())
        assert [c.counterpart_id for c in session.chats] == [CAROL]
        assert presence_writes(backend) == [True, True]

    def test_toggle_expand(self, session):
        run(session.open(BOB, "Bob Martin"))
        session.toggle_expand(BOB)
        assert session.chats[0].expanded is True
        session.toggle_expand(BOB)
        assert session.chats[0].expanded is False

    def test_profile_online_flag(self, session, backend):
        run(session.open(BOB, "Bob Martin"))
        assert run(backend.profiles.get(ALICE))["is_online"] is True
        run(session.close(BOB))
        assert run(backend.profiles.get(ALICE))["is_online"] is False


@pytest.mark.unit
class TestListeners:

    def test_snapshot_after_each_action(self, session):
        snapshots = []
        session.add_listener(snapshots.append)
        run(session.open(BOB, "Bob Martin"))
        session.toggle_expand(BOB)
        run(session.close(BOB))
        assert [len(s.chats) for s in snapshots] == [1, 1, 0]
        assert snapshots[1].chats[0].expanded is True

    def test_remove_listener(self, session):
        snapshots = []
        remove = session.add_listener(snapshots.append)
        remove()
        run(session.open(BOB, "Bob Martin"))
        assert snapshots == []

    def test_failing_listener_does_not_block_others(self, session):
        seen = []

        def broken(snapshot):
            raise RuntimeError("render failed")

        session.add_listener(broken)
        session.add_listener(seen.append)
        run(session.open(BOB, "Bob Martin"))
        assert len(seen) == 1


@pytest.mark.unit
class TestSessionStorage:

    def test_saved_on_every_change(self, session, context):
        run(session.open(BOB, "Bob Martin"))
        assert [c.counterpart_id for c in context.storage.load(ALICE)] == [BOB]
        run(session.close(BOB))
        assert context.storage.load(ALICE) == []

    def test_corrupt_file_ignored(self, tmp_path):
        storage = SessionStorage(str(tmp_path))
        with open(storage.path_for(ALICE), "w", encoding="utf-8") as f:
            f.write("{not json")
        assert storage.load(ALICE) == []

    def test_clear(self, tmp_path):
        storage = SessionStorage(str(tmp_path))
        storage.save(ALICE, [ActiveChat(counterpart_id=BOB, name="Bob", position=Position(x=1, y=2))])
        storage.clear(ALICE)
        storage.clear(ALICE)
        assert storage.load(ALICE) == []

    def test_file_layout(self, tmp_path):
        storage = SessionStorage(str(tmp_path))
        storage.save(ALICE, [ActiveChat(counterpart_id=BOB, name="Bob", position=Position(x=1, y=2))])
        with open(tmp_path / f"active_chats_{ALICE}.json", encoding="utf-8") as f:
            raw = json.load(f)
        assert raw[0]["counterpart_id"] == BOB
        assert raw[0]["position"] == {"x": 1, "y": 2}

    def test_not_restored_by_default(self, session, context):
        context.storage.save(ALICE, [ActiveChat(counterpart_id=BOB, name="Bob", position=Position(x=1, y=2))])
        run(session.load())
        assert session.chats == ()

    def test_restored_when_enabled(self, context, backend, profiles):
        context.settings.restore_session_on_load = True
        context.storage.save(ALICE, [ActiveChat(counterpart_id=BOB, name="Bob", position=Position(x=1, y=2))])
        session = context.session_for(ALICE)
        run(session.load())
        assert [c.counterpart_id for c in session.chats] == [BOB]
        assert presence_writes(backend) == [True]


@pytest.mark.unit
class TestUnreadBadge:

    def test_badge_follows_inserts(self, session, context, backend):
        async def scenario():
            cid = await context.directory.get_or_create(BOB, ALICE)
            await session.start()
            before = session.has_unread
            await context.messages.send(cid, BOB, ALICE, "Bonjour")
            after = session.unread_count
            await session.stop()
            return before, after

        assert run(scenario()) == (False, 1)
        assert backend.bus.subscriber_count(message_channel(ALICE)) == 0

    def test_mixed_case_user_id(self, context, profiles):
        async def scenario():
            cid = await context.directory.get_or_create(BOB, ALICE)
            await context.messages.send(cid, BOB, ALICE, "Bonjour")
            async with context.session_for(ALICE.upper()) as session:
                started = session.unread_count
                await context.messages.send(cid, BOB, ALICE, "Toujours là ?")
                return session.user_id, started, session.unread_count

        assert run(scenario()) == (ALICE, 1, 2)

    def test_context_manager_stops_feed(self, session, backend):
        async def scenario():
            async with session:
                assert backend.bus.subscriber_count(message_channel(ALICE)) == 1

        run(scenario())
        assert backend.bus.subscriber_count(message_channel(ALICE)) == 0


@pytest.mark.unit
class TestWindows:

    def test_window_for_open_chat_only(self, session):
        assert session.window_for(BOB) is None
        run(session.open(BOB, "Bob Martin"))
        window = session.window_for(BOB)
        assert window is session.window_for(BOB)
        assert window.counterpart_name == "Bob Martin"

    def test_close_unmounts_window(self, session, backend):
        async def scenario():
            await session.open(BOB, "Bob Martin")
            window = session.window_for(BOB)
            await window.mount()
            mounted = window.mounted
            await session.close(BOB)
            return window, mounted

        window, mounted = run(scenario())
        assert mounted is True
        assert window.mounted is False
        assert backend.bus.subscriber_count(message_channel(ALICE)) == 0

    def test_window_toggle_delegates(self, session):
        run(session.open(BOB, "Bob Martin"))
        session.window_for(BOB).toggle_expand()
        assert session.chats[0].expanded is True
