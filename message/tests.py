import asyncio
from unittest.mock import MagicMock, patch

import factory
from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.db import DatabaseError, IntegrityError
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from faker import Faker

from channels.db import database_sync_to_async
from channels.layers import InMemoryChannelLayer
from channels.testing import WebsocketCommunicator
from rest_framework.exceptions import NotFound, ValidationError

from people.tokens import issue_token
from .events import parse_event
from .models import Conversation, ConversationParticipant, Message, pair_key
from .presence import SubscriptionRegistry
from .services import append, find_or_create, list_for_user, list_messages

User = get_user_model()
fake = Faker()

MOCK_FIND = "message.services.find_conversation"


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.LazyFunction(lambda: fake.unique.user_name())
    email = factory.LazyFunction(lambda: fake.unique.email())
    password = factory.PostGenerationMethodCall("set_password", "testpass123")


class MessageFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Message

    sender = factory.SubFactory(UserFactory)
    content = factory.LazyFunction(lambda: fake.sentence())


def auth_header(user):
    return {"HTTP_AUTHORIZATION": f"Bearer {issue_token(user)}"}


# ── Model Tests ────────────────────────────────────────────────────────────


class ConversationModelTest(TestCase):
    def test_pair_key_ignores_argument_order(self):
        self.assertEqual(pair_key(7, 3), "3:7")
        self.assertEqual(pair_key(3, 7), "3:7")

    def test_duplicate_pair_key_raises_integrity_error(self):
        Conversation.objects.create(pair_key="1:2")
        with self.assertRaises(IntegrityError):
            Conversation.objects.create(pair_key="1:2")

    def test_duplicate_participant_raises_integrity_error(self):
        conv = Conversation.objects.create(pair_key="1:2")
        user = UserFactory()
        ConversationParticipant.objects.create(conversation=conv, user=user)
        with self.assertRaises(IntegrityError):
            ConversationParticipant.objects.create(conversation=conv, user=user)

    def test_message_sender_becomes_null_on_user_delete(self):
        alice, bob = UserFactory(), UserFactory()
        conv, _ = find_or_create(alice.id, bob.id)
        msg = MessageFactory(conversation=conv, sender=alice)
        alice.delete()
        msg.refresh_from_db()
        self.assertIsNone(msg.sender)


# ── Conversation Directory ─────────────────────────────────────────────────


class FindOrCreateTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()

    def test_first_call_creates_conversation_with_both_participants(self):
        conv, existed = find_or_create(self.alice.id, self.bob.id)
        self.assertFalse(existed)
        self.assertEqual(
            set(conv.participants.values_list("user_id", flat=True)),
            {self.alice.id, self.bob.id},
        )

    def test_repeated_calls_return_same_conversation(self):
        first, _ = find_or_create(self.alice.id, self.bob.id)
        for _ in range(3):
            again, existed = find_or_create(self.alice.id, self.bob.id)
            self.assertTrue(existed)
            self.assertEqual(again.id, first.id)
        self.assertEqual(Conversation.objects.count(), 1)

    def test_argument_order_does_not_matter(self):
        first, _ = find_or_create(self.alice.id, self.bob.id)
        second, existed = find_or_create(self.bob.id, self.alice.id)
        self.assertTrue(existed)
        self.assertEqual(first.id, second.id)

    def test_distinct_pairs_get_distinct_conversations(self):
        carol = UserFactory()
        ab, _ = find_or_create(self.alice.id, self.bob.id)
        ac, _ = find_or_create(self.alice.id, carol.id)
        bc, _ = find_or_create(self.bob.id, carol.id)
        self.assertEqual(len({ab.id, ac.id, bc.id}), 3)

    def test_conversation_with_self_rejected(self):
        with self.assertRaises(ValidationError):
            find_or_create(self.alice.id, self.alice.id)

    def test_concurrent_creation_resolves_to_single_conversation(self):
        # both callers miss the lookup, as two interleaved requests would
        with patch(MOCK_FIND, return_value=None):
            first, first_existed = find_or_create(self.alice.id, self.bob.id)
            second, second_existed = find_or_create(self.bob.id, self.alice.id)

        self.assertFalse(first_existed)
        self.assertTrue(second_existed)
        self.assertEqual(first.id, second.id)
        self.assertEqual(Conversation.objects.count(), 1)
        self.assertEqual(ConversationParticipant.objects.count(), 2)

    def test_rival_commit_between_lookup_and_insert_is_returned(self):
        rivals = []

        def rival_commits_after_lookup(user_a_id, user_b_id):
            conv = Conversation.objects.create(pair_key=pair_key(user_a_id, user_b_id))
            ConversationParticipant.objects.bulk_create([
                ConversationParticipant(conversation=conv, user_id=user_a_id),
                ConversationParticipant(conversation=conv, user_id=user_b_id),
            ])
            rivals.append(conv)
            return None

        with patch(MOCK_FIND, side_effect=rival_commits_after_lookup):
            conv, existed = find_or_create(self.alice.id, self.bob.id)

        self.assertTrue(existed)
        self.assertEqual(conv.id, rivals[0].id)
        self.assertEqual(Conversation.objects.count(), 1)
        self.assertEqual(ConversationParticipant.objects.count(), 2)

    def test_integrity_error_without_existing_pair_propagates(self):
        with patch.object(Conversation.objects, "create", side_effect=IntegrityError("fk")):
            with self.assertRaises(IntegrityError):
                find_or_create(self.alice.id, self.bob.id)
        self.assertEqual(Conversation.objects.count(), 0)

    def test_failed_participant_insert_leaves_no_orphan(self):
        with patch.object(
            ConversationParticipant.objects, "bulk_create", side_effect=DatabaseError("boom")
        ):
            with self.assertRaises(DatabaseError):
                find_or_create(self.alice.id, self.bob.id)
        self.assertEqual(Conversation.objects.count(), 0)


# ── Message Log ────────────────────────────────────────────────────────────


class MessageLogTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        self.conv, _ = find_or_create(self.alice.id, self.bob.id)

    def test_append_returns_message_with_sender_name(self):
        msg = append(self.conv.id, self.alice.id, "hi")
        self.assertEqual(msg.content, "hi")
        self.assertEqual(msg.sender_name, self.alice.username)
        self.assertEqual(msg.conversation_id, self.conv.id)

    def test_content_is_stored_verbatim(self):
        msg = append(self.conv.id, self.alice.id, "  spaced\n out  ")
        msg.refresh_from_db()
        self.assertEqual(msg.content, "  spaced\n out  ")

    def test_append_to_unknown_conversation_raises_not_found(self):
        with self.assertRaises(NotFound):
            append(99999, self.alice.id, "hi")
        self.assertEqual(Message.objects.count(), 0)

    def test_append_moves_activity_timestamp_to_message_time(self):
        msg = append(self.conv.id, self.bob.id, "hello")
        self.conv.refresh_from_db()
        self.assertEqual(self.conv.updated_at, msg.created_at)

    def test_list_is_ordered_by_creation_time(self):
        for text in ["one", "two", "three"]:
            append(self.conv.id, self.alice.id, text)
        times = [m.created_at for m in list_messages(self.conv.id)]
        self.assertEqual(times, sorted(times))

    def test_sent_message_is_listed_last(self):
        append(self.conv.id, self.alice.id, "first")
        append(self.conv.id, self.bob.id, "second")
        last = list(list_messages(self.conv.id))[-1]
        self.assertEqual(last.content, "second")
        self.assertEqual(last.sender_name, self.bob.username)

    def test_same_timestamp_ordered_by_insertion(self):
        instant = timezone.now()
        with patch("django.utils.timezone.now", return_value=instant):
            ids = [append(self.conv.id, self.alice.id, str(i)).id for i in range(3)]
        self.assertEqual([m.id for m in list_messages(self.conv.id)], ids)

    def test_list_excludes_other_conversations(self):
        carol = UserFactory()
        other, _ = find_or_create(self.alice.id, carol.id)
        append(other.id, carol.id, "elsewhere")
        append(self.conv.id, self.alice.id, "here")
        self.assertEqual([m.content for m in list_messages(self.conv.id)], ["here"])


# ── Conversation Activity Index ────────────────────────────────────────────


class ActivityIndexTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        self.carol = UserFactory()

    def test_empty_conversation_listed_with_null_preview(self):
        conv, _ = find_or_create(self.alice.id, self.bob.id)
        rows = list(list_for_user(self.alice.id))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["id"], conv.id)
        self.assertEqual(rows[0]["other_user"], self.bob.username)
        self.assertEqual(rows[0]["other_user_id"], self.bob.id)
        self.assertIsNone(rows[0]["last_message"])
        self.assertIsNone(rows[0]["last_message_time"])

    def test_preview_is_newest_message(self):
        conv, _ = find_or_create(self.alice.id, self.bob.id)
        append(conv.id, self.alice.id, "older")
        newest = append(conv.id, self.bob.id, "newer")
        row = list(list_for_user(self.alice.id))[0]
        self.assertEqual(row["last_message"], "newer")
        self.assertEqual(row["last_message_time"], newest.created_at)

    def test_ordered_by_most_recent_activity(self):
        with_bob, _ = find_or_create(self.alice.id, self.bob.id)
        with_carol, _ = find_or_create(self.alice.id, self.carol.id)
        self.assertEqual([r["id"] for r in list_for_user(self.alice.id)], [with_carol.id, with_bob.id])

    def test_message_moves_conversation_to_front_for_both_participants(self):
        with_bob, _ = find_or_create(self.alice.id, self.bob.id)
        find_or_create(self.alice.id, self.carol.id)
        find_or_create(self.bob.id, self.carol.id)

        append(with_bob.id, self.alice.id, "ping")

        self.assertEqual(list(list_for_user(self.alice.id))[0]["id"], with_bob.id)
        self.assertEqual(list(list_for_user(self.bob.id))[0]["id"], with_bob.id)

    def test_only_own_conversations_listed(self):
        find_or_create(self.bob.id, self.carol.id)
        self.assertEqual(list(list_for_user(self.alice.id)), [])


# ── Presence / Subscription Router ─────────────────────────────────────────


class SubscriptionRegistryTest(SimpleTestCase):
    def setUp(self):
        self.layer = InMemoryChannelLayer()
        self.registry = SubscriptionRegistry(channel_layer=self.layer)

    async def assert_nothing_received(self, channel):
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(self.layer.receive(channel), timeout=0.1)

    async def test_subscriber_receives_published_message(self):
        channel = await self.layer.new_channel()
        await self.registry.subscribe(channel, 1)
        await self.registry.publish(1, {"id": 10, "content": "hi"})

        event = await asyncio.wait_for(self.layer.receive(channel), timeout=1)
        self.assertEqual(event, {"type": "new_message", "message": {"id": 10, "content": "hi"}})

    async def test_message_for_other_conversation_not_delivered(self):
        channel = await self.layer.new_channel()
        await self.registry.subscribe(channel, 1)
        await self.registry.publish(2, {"id": 11})
        await self.assert_nothing_received(channel)

    async def test_every_subscriber_of_topic_receives(self):
        first = await self.layer.new_channel()
        second = await self.layer.new_channel()
        await self.registry.subscribe(first, 1)
        await self.registry.subscribe(second, 1)
        await self.registry.publish(1, {"id": 12})

        for channel in (first, second):
            event = await asyncio.wait_for(self.layer.receive(channel), timeout=1)
            self.assertEqual(event["message"], {"id": 12})

    async def test_connection_can_hold_many_topics(self):
        channel = await self.layer.new_channel()
        await self.registry.subscribe(channel, 1)
        await self.registry.subscribe(channel, 2)
        self.assertEqual(self.registry.topics_for(channel), frozenset({1, 2}))

        await self.registry.publish(2, {"id": 13})
        event = await asyncio.wait_for(self.layer.receive(channel), timeout=1)
        self.assertEqual(event["message"], {"id": 13})

    async def test_unsubscribe_all_stops_delivery(self):
        channel = await self.layer.new_channel()
        await self.registry.subscribe(channel, 1)
        await self.registry.subscribe(channel, 2)
        await self.registry.unsubscribe_all(channel)

        self.assertEqual(self.registry.topics_for(channel), frozenset())
        await self.registry.publish(1, {"id": 14})
        await self.registry.publish(2, {"id": 15})
        await self.assert_nothing_received(channel)

    async def test_late_subscriber_gets_no_replay(self):
        await self.registry.publish(1, {"id": 16})
        channel = await self.layer.new_channel()
        await self.registry.subscribe(channel, 1)
        await self.assert_nothing_received(channel)

    def test_group_name(self):
        self.assertEqual(SubscriptionRegistry.group_name(42), "chat_42")


# ── Event Schemas ──────────────────────────────────────────────────────────


class ParseEventTest(SimpleTestCase):
    def test_join_conversation(self):
        event = parse_event('{"event": "join_conversation", "data": {"conversationId": 3}}')
        self.assertEqual(event.name, "join_conversation")
        self.assertEqual(event.data, {"conversationId": 3})

    def test_send_message_keeps_content_untrimmed(self):
        event = parse_event('{"event": "send_message", "data": {"conversationId": 3, "content": " hi "}}')
        self.assertEqual(event.data["content"], " hi ")
        self.assertNotIn("senderId", event.data)

    def test_unknown_event_rejected(self):
        with self.assertRaises(ValidationError):
            parse_event('{"event": "delete_message", "data": {}}')

    def test_invalid_json_rejected(self):
        with self.assertRaises(ValidationError):
            parse_event("not json")

    def test_missing_data_rejected(self):
        with self.assertRaises(ValidationError):
            parse_event('{"event": "join_conversation"}')

    def test_oversized_content_rejected(self):
        with self.assertRaises(ValidationError):
            parse_event(
                '{"event": "send_message", "data": {"conversationId": 1, "content": "%s"}}'
                % ("x" * 4001)
            )


# ── HTTP API ───────────────────────────────────────────────────────────────


class ConversationsViewTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        self.url = reverse("conversations")

    def _create(self, user, other_id):
        return self.client.post(
            self.url, {"otherUserId": other_id}, content_type="application/json", **auth_header(user)
        )

    def test_missing_token_returns_401(self):
        resp = self.client.post(self.url, {"otherUserId": self.bob.id}, content_type="application/json")
        self.assertEqual(resp.status_code, 401)

    def test_create_then_reuse(self):
        first = self._create(self.alice, self.bob.id).json()
        self.assertFalse(first["exists"])
        second = self._create(self.alice, self.bob.id).json()
        self.assertTrue(second["exists"])
        self.assertEqual(first["conversationId"], second["conversationId"])

    def test_other_side_reuses_conversation(self):
        first = self._create(self.alice, self.bob.id).json()
        second = self._create(self.bob, self.alice.id).json()
        self.assertEqual(second, {"conversationId": first["conversationId"], "exists": True})

    def test_unknown_user_returns_404(self):
        resp = self._create(self.alice, 99999)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"error": "User not found"})
        self.assertEqual(Conversation.objects.count(), 0)

    def test_self_conversation_returns_400(self):
        resp = self._create(self.alice, self.alice.id)
        self.assertEqual(resp.status_code, 400)
        self.assertIn("error", resp.json())

    def test_list_returns_summaries(self):
        conv, _ = find_or_create(self.alice.id, self.bob.id)
        append(conv.id, self.alice.id, "hey")
        resp = self.client.get(self.url, **auth_header(self.bob))
        self.assertEqual(resp.status_code, 200)
        row = resp.json()[0]
        self.assertEqual(row["id"], conv.id)
        self.assertEqual(row["other_user"], self.alice.username)
        self.assertEqual(row["last_message"], "hey")

    def test_storage_failure_returns_500(self):
        with patch("message.views.list_for_user", side_effect=DatabaseError("boom")):
            resp = self.client.get(self.url, **auth_header(self.alice))
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "Database error"})


class MessagesViewTest(TestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        self.conv, _ = find_or_create(self.alice.id, self.bob.id)
        self.url = reverse("messages", kwargs={"conversation_id": self.conv.id})

    def test_participant_gets_ordered_history(self):
        append(self.conv.id, self.alice.id, "one")
        append(self.conv.id, self.bob.id, "two")
        resp = self.client.get(self.url, **auth_header(self.bob))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual([m["content"] for m in body], ["one", "two"])
        self.assertEqual([m["sender_name"] for m in body], [self.alice.username, self.bob.username])
        self.assertEqual(
            set(body[0]), {"id", "conversation_id", "sender_id", "content", "created_at", "sender_name"}
        )

    def test_non_participant_gets_404(self):
        resp = self.client.get(self.url, **auth_header(UserFactory()))
        self.assertEqual(resp.status_code, 404)

    def test_unknown_conversation_gets_404(self):
        url = reverse("messages", kwargs={"conversation_id": 99999})
        resp = self.client.get(url, **auth_header(self.alice))
        self.assertEqual(resp.status_code, 404)


class RoundTripTest(TestCase):
    def _post(self, name, data, **extra):
        return self.client.post(reverse(name), data, content_type="application/json", **extra)

    def test_register_login_converse(self):
        alice = self._post("register", {"username": "alice", "email": "alice@x.com", "password": "pw1"}).json()
        bob = self._post("register", {"username": "bob", "email": "bob@x.com", "password": "pw2"}).json()

        login = self._post("login", {"email": "alice@x.com", "password": "pw1"})
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()["userId"], alice["userId"])
        self.assertEqual(self._post("login", {"email": "alice@x.com", "password": "bad"}).status_code, 400)

        as_alice = {"HTTP_AUTHORIZATION": f"Bearer {alice['token']}"}
        as_bob = {"HTTP_AUTHORIZATION": f"Bearer {bob['token']}"}

        created = self._post("conversations", {"otherUserId": bob["userId"]}, **as_alice).json()
        self.assertFalse(created["exists"])
        again = self._post("conversations", {"otherUserId": bob["userId"]}, **as_alice).json()
        self.assertEqual(again, {"conversationId": created["conversationId"], "exists": True})

        append(created["conversationId"], alice["userId"], "hi")

        history = self.client.get(
            reverse("messages", kwargs={"conversation_id": created["conversationId"]}), **as_alice
        ).json()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["content"], "hi")
        self.assertEqual(history[0]["sender_name"], "alice")

        summaries = self.client.get(reverse("conversations"), **as_bob).json()
        self.assertEqual(summaries[0]["other_user"], "alice")
        self.assertEqual(summaries[0]["last_message"], "hi")

        users = self.client.get(reverse("users"), **as_alice).json()
        self.assertEqual([u["username"] for u in users], ["bob"])


# ── Real-time Channel ──────────────────────────────────────────────────────


class ChatConsumerTest(TransactionTestCase):
    def setUp(self):
        self.alice = UserFactory()
        self.bob = UserFactory()
        self.carol = UserFactory()
        self.conv, _ = find_or_create(self.alice.id, self.bob.id)
        self.other_conv, _ = find_or_create(self.alice.id, self.carol.id)

    def _communicator(self, user=None):
        from chatserver.asgi import application

        path = "/ws/chat/" if user is None else f"/ws/chat/?token={issue_token(user)}"
        return WebsocketCommunicator(application, path)

    async def _connect(self, user):
        communicator = self._communicator(user)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def _join(self, communicator, conversation_id):
        await communicator.send_json_to({"event": "join_conversation", "data": {"conversationId": conversation_id}})
        return await communicator.receive_json_from()

    async def test_unauthenticated_connection_rejected(self):
        communicator = self._communicator()
        connected, _ = await communicator.connect()
        self.assertFalse(connected)

    async def test_disallowed_origin_rejected(self):
        from chatserver.asgi import websocket_application

        communicator = WebsocketCommunicator(
            websocket_application(["http://frontend.example"]),
            f"/ws/chat/?token={issue_token(self.alice)}",
            headers=[(b"origin", b"http://elsewhere.example")],
        )
        connected, _ = await communicator.connect()
        self.assertFalse(connected)

    async def test_allowed_origin_accepted(self):
        from chatserver.asgi import websocket_application

        communicator = WebsocketCommunicator(
            websocket_application(["http://frontend.example"]),
            f"/ws/chat/?token={issue_token(self.alice)}",
            headers=[(b"origin", b"http://frontend.example")],
        )
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        await communicator.disconnect()

    async def test_invalid_token_rejected(self):
        from chatserver.asgi import application

        communicator = WebsocketCommunicator(application, "/ws/chat/?token=garbage")
        connected, _ = await communicator.connect()
        self.assertFalse(connected)

    async def test_token_in_authorization_header_accepted(self):
        from chatserver.asgi import application

        communicator = WebsocketCommunicator(
            application,
            "/ws/chat/",
            headers=[(b"authorization", f"Bearer {issue_token(self.alice)}".encode())],
        )
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        await communicator.disconnect()

    async def test_join_is_acknowledged(self):
        alice = await self._connect(self.alice)
        ack = await self._join(alice, self.conv.id)
        self.assertEqual(ack, {"event": "joined", "data": {"conversationId": self.conv.id}})
        await alice.disconnect()

    async def test_message_fans_out_to_joined_participants(self):
        alice = await self._connect(self.alice)
        bob = await self._connect(self.bob)
        await self._join(alice, self.conv.id)
        await self._join(bob, self.conv.id)

        await alice.send_json_to({"event": "send_message", "data": {"conversationId": self.conv.id, "content": "hi"}})

        for communicator in (alice, bob):
            event = await communicator.receive_json_from()
            self.assertEqual(event["event"], "new_message")
            self.assertEqual(event["data"]["content"], "hi")
            self.assertEqual(event["data"]["sender_id"], self.alice.id)
            self.assertEqual(event["data"]["sender_name"], self.alice.username)

        count = await database_sync_to_async(Message.objects.filter(conversation=self.conv).count)()
        self.assertEqual(count, 1)
        await alice.disconnect()
        await bob.disconnect()

    async def test_message_in_other_conversation_not_delivered(self):
        alice = await self._connect(self.alice)
        bob = await self._connect(self.bob)
        await self._join(bob, self.conv.id)
        await self._join(alice, self.other_conv.id)

        await alice.send_json_to({
            "event": "send_message",
            "data": {"conversationId": self.other_conv.id, "content": "to carol"},
        })
        event = await alice.receive_json_from()
        self.assertEqual(event["data"]["content"], "to carol")
        self.assertTrue(await bob.receive_nothing())
        await alice.disconnect()
        await bob.disconnect()

    async def test_messages_delivered_in_send_order(self):
        alice = await self._connect(self.alice)
        bob = await self._connect(self.bob)
        await self._join(bob, self.conv.id)

        for text in ["one", "two", "three"]:
            await alice.send_json_to({"event": "send_message", "data": {"conversationId": self.conv.id, "content": text}})

        received = [(await bob.receive_json_from())["data"]["content"] for _ in range(3)]
        self.assertEqual(received, ["one", "two", "three"])
        await alice.disconnect()
        await bob.disconnect()

    async def test_non_participant_cannot_join(self):
        carol = await self._connect(self.carol)
        event = await self._join(carol, self.conv.id)
        self.assertEqual(event["event"], "error")
        self.assertEqual(event["data"], {"event": "join_conversation", "error": "Conversation not found"})
        await carol.disconnect()

    async def test_non_participant_cannot_send(self):
        carol = await self._connect(self.carol)
        await carol.send_json_to({"event": "send_message", "data": {"conversationId": self.conv.id, "content": "hi"}})
        event = await carol.receive_json_from()
        self.assertEqual(event["event"], "error")
        count = await database_sync_to_async(Message.objects.count)()
        self.assertEqual(count, 0)
        await carol.disconnect()

    async def test_sender_cannot_be_spoofed(self):
        alice = await self._connect(self.alice)
        await alice.send_json_to({
            "event": "send_message",
            "data": {"conversationId": self.conv.id, "senderId": self.bob.id, "content": "as bob"},
        })
        event = await alice.receive_json_from()
        self.assertEqual(event["event"], "error")
        self.assertEqual(event["data"]["event"], "send_message")
        await alice.disconnect()

    async def test_malformed_frame_reports_error(self):
        alice = await self._connect(self.alice)
        await alice.send_to(text_data="{not json")
        event = await alice.receive_json_from()
        self.assertEqual(event, {"event": "error", "data": {"event": None, "error": "Frame is not valid JSON"}})
        await alice.disconnect()

    async def test_storage_failure_reported_to_sender_only(self):
        alice = await self._connect(self.alice)
        bob = await self._connect(self.bob)
        await self._join(bob, self.conv.id)

        with patch("message.consumers.append", side_effect=DatabaseError("boom")):
            await alice.send_json_to({"event": "send_message", "data": {"conversationId": self.conv.id, "content": "hi"}})
            event = await alice.receive_json_from()

        self.assertEqual(event["data"], {"event": "send_message", "error": "Message could not be saved"})
        self.assertTrue(await bob.receive_nothing())
        await alice.disconnect()
        await bob.disconnect()


# ── Management Command ─────────────────────────────────────────────────────


class ServeCommandTest(SimpleTestCase):
    def test_missing_port_is_an_error(self):
        with override_settings(PORT=None):
            with self.assertRaises(CommandError):
                call_command("serve")

    def test_runs_daphne_on_configured_port(self):
        cli = MagicMock()
        with override_settings(PORT="8123", HOST="127.0.0.1"):
            with patch("message.management.commands.serve.CommandLineInterface", return_value=cli):
                call_command("serve")
        cli.run.assert_called_once_with(
            ["--bind", "127.0.0.1", "--port", "8123", "chatserver.asgi:application"]
        )
