import asyncio

import pytest

from chatfeed.backend.memory import InMemoryChatClient, InMemoryConversation, message_topic
from chatfeed.bus.events import MessageEvent, ReactionEvent
from chatfeed.errors import IdentityError
from chatfeed.feed.conversation import ConversationViewModel


class GatedConversation(InMemoryConversation):
    """Conversation whose history query blocks until released."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def query(self, *args, **kwargs):
        await self.gate.wait()
        return await super().query(*args, **kwargs)


class GatedClient(InMemoryChatClient):
    def get_conversation(self, channel_name):
        if channel_name == "slow":
            conv = self._conversations.get(channel_name)
            if conv is None:
                conv = GatedConversation(self.server, self.client_id, channel_name)
                self._conversations[channel_name] = conv
            return conv
        return super().get_conversation(channel_name)


@pytest.fixture
def vm(client):
    model = ConversationViewModel(client, "alice", page_size=3)
    yield model
    model.close()


@pytest.mark.asyncio
async def test_requires_username(client):
    with pytest.raises(IdentityError):
        ConversationViewModel(client, "")


@pytest.mark.asyncio
async def test_load_empty_history(vm):
    loading = []
    vm.add_listener(lambda m: loading.append(m.is_loading))

    messages = await vm.load("general")

    assert messages == ()
    assert vm.messages == ()
    assert vm.cursor is None
    assert vm.history_exhausted
    assert loading[0] is True
    assert vm.is_loading is False


@pytest.mark.asyncio
async def test_load_pages_back_in_chronological_order(server, vm, make_message):
    server.seed("general", [make_message(f"m{i}", offset_s=i) for i in range(5)])

    await vm.load("general")
    assert [m.id for m in vm.messages] == ["m2", "m3", "m4"]
    assert vm.cursor == "m2"

    await vm.load()
    assert [m.id for m in vm.messages] == ["m0", "m1", "m2", "m3", "m4"]
    assert vm.cursor == "m0"

    await vm.load()
    assert vm.history_exhausted
    assert vm.cursor is None
    assert len(vm.messages) == 5

    # exhausted: further loads are no-ops
    await vm.load()
    assert len(vm.messages) == 5


@pytest.mark.asyncio
async def test_created_event_appends(server, vm, make_message):
    await vm.load("general")

    await server.bus.publish(message_topic("general", "created"), MessageEvent("created", make_message("m1")))
    await server.drain()

    assert [m.id for m in vm.messages] == ["m1"]


@pytest.mark.asyncio
async def test_duplicate_created_event_is_ignored(vm, make_message):
    await vm.load("general")
    m1 = make_message("m1")

    vm.on_message_created(m1)
    vm.on_message_created(make_message("m1", text="again"))

    assert vm.messages == (m1,)


@pytest.mark.asyncio
async def test_send_round_trips_through_events(server, vm):
    await vm.load("general")

    assert await vm.send("hello")
    # nothing optimistic before the broadcast lands
    assert vm.messages == ()

    await server.drain()
    assert [m.text for m in vm.messages] == ["hello"]

    message_id = vm.messages[0].id
    await vm.edit(message_id, "hello world")
    await server.drain()
    assert vm.messages[0].text == "hello world"
    assert vm.messages[0].id == message_id

    await vm.delete(message_id)
    await server.drain()
    assert vm.messages == ()


@pytest.mark.asyncio
async def test_reactions_from_backend(server, vm):
    await vm.load("general")
    await vm.send("react to me")
    await server.drain()
    message_id = vm.messages[0].id

    await vm.add_reaction(message_id, "emoji")
    await server.drain()
    reaction = vm.messages[0].reactions["emoji"][0]
    assert reaction.reactor_id == "alice"

    await vm.remove_reaction(reaction.reaction_id)
    await server.drain()
    assert vm.messages[0].reactions == {}


@pytest.mark.asyncio
async def test_same_reaction_event_twice(server, vm, make_message, reaction):
    await vm.load("general")
    vm.on_message_created(make_message("m1"))
    untouched = make_message("m2")
    vm.on_message_created(untouched)

    topic = "general:reaction:created"
    await server.bus.publish(topic, reaction())
    await server.bus.publish(topic, reaction())
    await server.drain()

    assert len(vm.messages[0].reactions["emoji"]) == 1
    assert vm.messages[1] is untouched


@pytest.mark.asyncio
async def test_deleting_unknown_reaction_is_noop(vm, make_message, reaction):
    await vm.load("general")
    vm.on_message_created(make_message("m1"))
    before = vm.messages

    vm.on_reaction_deleted(ReactionEvent(reaction_id="r1", type="emoji", actor_id="u2", kind="deleted"))

    assert vm.messages is before


@pytest.mark.asyncio
async def test_malformed_events_are_ignored(server, vm, make_message):
    await vm.load("general")

    await server.bus.publish(message_topic("general", "created"), {"id": "x"})
    await server.bus.publish(message_topic("general", "created"), MessageEvent("created", None))
    await server.bus.publish(
        "general:reaction:created",
        ReactionEvent(reaction_id="r1", type="emoji", actor_id="u2"),
    )
    await server.bus.publish(message_topic("general", "created"), MessageEvent("created", make_message("m1")))
    await server.drain()

    assert [m.id for m in vm.messages] == ["m1"]


@pytest.mark.asyncio
async def test_query_failure_clears_loading(server, vm):
    server.fail("query")

    messages = await vm.load("general")

    assert messages == ()
    assert vm.is_loading is False
    assert not vm.history_exhausted


@pytest.mark.asyncio
async def test_action_failure_reports_false(server, vm):
    await vm.load("general")
    server.fail("send")

    assert await vm.send("lost") is False
    await server.drain()
    assert vm.messages == ()


@pytest.mark.asyncio
async def test_action_without_channel(vm):
    assert await vm.send("nowhere") is False


@pytest.mark.asyncio
async def test_channel_switch_resets_state(server, vm, make_message):
    server.seed("general", [make_message("g1")])
    server.seed("random", [make_message("r1", channel="random")])

    await vm.load("general")
    assert [m.id for m in vm.messages] == ["g1"]

    await vm.load("random")
    assert [m.id for m in vm.messages] == ["r1"]
    assert vm.channel_name == "random"
    assert server.bus.listener_count(message_topic("general", "created")) == 0


@pytest.mark.asyncio
async def test_stale_page_is_discarded(server, make_message):
    client = GatedClient("alice", server)
    server.seed("slow", [make_message("s1", channel="slow")])
    server.seed("general", [make_message("g1")])
    vm = ConversationViewModel(client, "alice")

    pending = asyncio.create_task(vm.load("slow"))
    await asyncio.sleep(0)
    assert vm.is_loading

    await vm.load("general")
    client.get_conversation("slow").gate.set()
    await pending

    assert [m.id for m in vm.messages] == ["g1"]
    assert vm.channel_name == "general"
    vm.close()


@pytest.mark.asyncio
async def test_page_resolving_after_close_is_discarded(server, make_message):
    client = GatedClient("alice", server)
    server.seed("slow", [make_message("s1", channel="slow")])
    vm = ConversationViewModel(client, "alice")

    pending = asyncio.create_task(vm.load("slow"))
    await asyncio.sleep(0)
    vm.close()
    client.get_conversation("slow").gate.set()
    await pending

    assert vm.messages == ()
    assert vm.is_loading is False


@pytest.mark.asyncio
async def test_events_after_close_do_not_mutate(server, vm, make_message):
    await vm.load("general")
    await server.bus.publish(message_topic("general", "created"), MessageEvent("created", make_message("m1")))
    vm.close()
    await server.drain()

    assert vm.messages == ()
    assert server.bus.listener_count(message_topic("general", "created")) == 0


@pytest.mark.asyncio
async def test_deleting_cursor_message_keeps_paging(server, client, make_message):
    server.seed("general", [make_message(f"m{i}", offset_s=i) for i in range(5)])
    vm = ConversationViewModel(client, "alice", page_size=2)
    await vm.load("general")
    assert vm.cursor == "m3"

    peer = InMemoryChatClient("bob", server).get_conversation("general")
    await peer.delete("m3")
    await server.drain()
    assert vm.cursor == "m4"

    await vm.load()
    await vm.load()
    await vm.load()

    assert [m.id for m in vm.messages] == ["m0", "m1", "m2", "m4"]
    assert vm.history_exhausted
    vm.close()


@pytest.mark.asyncio
async def test_deleting_only_loaded_message_resets_cursor(server, vm, make_message):
    server.seed("general", [make_message("m0")])
    await vm.load("general")

    vm.on_message_deleted(make_message("m0"))

    assert vm.cursor is None
    assert vm.messages == ()


@pytest.mark.asyncio
async def test_cancelled_load_clears_loading(server, make_message):
    client = GatedClient("alice", server)
    server.seed("slow", [make_message("s1", channel="slow")])
    vm = ConversationViewModel(client, "alice")

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(vm.load("slow"), 0.05)

    assert vm.is_loading is False
    assert vm.messages == ()

    client.get_conversation("slow").gate.set()
    await vm.load()
    assert [m.id for m in vm.messages] == ["s1"]
    vm.close()
