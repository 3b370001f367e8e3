import unittest

from relaybot.relay import RelayAction, RelayMapper
from relaybot.simulation import Clock, RecordingGateway
from relaybot.store import InMemoryStateStore
from relaybot.tasks import BackgroundTasks

from .update_util import OWNER, message, relayed_copy


def _reject_profile_links(method, payload):
    if method == "copyMessage" and "url" in payload.get("reply_markup", {}).get("inline_keyboard", [[{}]])[0][0]:
        return "Bad Request: BUTTON_USER_PRIVACY_RESTRICTED"
    return None


def _reject_all_copies(method, payload):
    return "Forbidden: bot was blocked by the user" if method == "copyMessage" else None


class RelayMapperTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = Clock(1000)
        self.store = InMemoryStateStore(now_func=self.clock)
        self._use_gateway(RecordingGateway(first_message_id=700))

    def _use_gateway(self, gateway: RecordingGateway) -> None:
        self.gateway = gateway
        self.tasks = BackgroundTasks()
        self.relay = RelayMapper(OWNER, self.store, self.gateway, tasks=self.tasks)

    async def _relay(self, msg: dict, *, is_edit: bool = False, now: int | None = None) -> RelayAction:
        if now is not None:
            self.clock.now = now
        action = await self.relay.relay_inbound(msg, is_edit=is_edit, now=self.clock.now)
        await self.tasks.drain()
        return action

    async def test_numeric_sender_gets_profile_link_and_mapping(self):
        action = await self._relay(message(555, 10, date=1000))

        self.assertIs(action, RelayAction.COPIED)
        copies = self.gateway.calls_to("copyMessage")
        self.assertEqual(len(copies), 1)
        self.assertEqual(
            copies[0].payload,
            {
                "chat_id": 999,
                "from_chat_id": 555,
                "message_id": 10,
                "reply_markup": {"inline_keyboard": [[{"text": "555", "url": "tg://user?id=555"}]]},
            },
        )
        self.assertEqual(await self.store.get("map:555:10"), "700")
        self.assertEqual(self.store.ttl("map:555:10"), 86400)
        self.assertEqual(self.gateway.calls_to("sendChatAction")[0].payload, {"chat_id": 555, "action": "typing"})

    async def test_rejected_profile_link_falls_back_to_callback_button(self):
        self._use_gateway(RecordingGateway(reject=_reject_profile_links, first_message_id=700))

        action = await self._relay(message(555, 10, date=1000))

        self.assertIs(action, RelayAction.COPIED)
        copies = self.gateway.calls_to("copyMessage")
        self.assertEqual(len(copies), 2)
        self.assertEqual(
            copies[1].payload["reply_markup"], {"inline_keyboard": [[{"text": "555", "callback_data": "555"}]]}
        )
        self.assertEqual(await self.store.get("map:555:10"), "700")

    async def test_non_numeric_identity_uses_callback_button_only(self):
        action = await self._relay(message(-100500, 3, date=1000))

        self.assertIs(action, RelayAction.COPIED)
        copies = self.gateway.calls_to("copyMessage")
        self.assertEqual(len(copies), 1)
        button = copies[0].payload["reply_markup"]["inline_keyboard"][0][0]
        self.assertEqual(button, {"text": "-100500", "callback_data": "-100500"})

    async def test_failed_fallback_is_swallowed_without_mapping(self):
        self._use_gateway(RecordingGateway(reject=_reject_all_copies))

        action = await self._relay(message(555, 10, date=1000))

        self.assertIs(action, RelayAction.FAILED)
        self.assertEqual(len(self.gateway.calls_to("copyMessage")), 2)
        self.assertIsNone(await self.store.get("map:555:10"))

    async def test_quick_edit_updates_relayed_copy_in_place(self):
        await self._relay(message(555, 10, "hello", date=1000))

        action = await self._relay(message(555, 10, "hello again", date=1000, edit_date=1030), is_edit=True, now=1030)

        self.assertIs(action, RelayAction.EDITED)
        self.assertEqual(len(self.gateway.calls_to("copyMessage")), 1)
        edit = self.gateway.calls_to("editMessageText")[0].payload
        self.assertEqual(
            edit,
            {
                "chat_id": 999,
                "message_id": 700,
                "text": "hello again\n\n(Ed) ID: 555",
                "reply_markup": {"inline_keyboard": [[{"text": "555", "callback_data": "555"}]]},
            },
        )

    async def test_late_edit_is_relayed_as_new_copy(self):
        await self._relay(message(555, 10, "hello", date=1000))

        action = await self._relay(message(555, 10, "hello again", date=1000, edit_date=1061), is_edit=True, now=1061)

        self.assertIs(action, RelayAction.COPIED)
        self.assertEqual(len(self.gateway.calls_to("copyMessage")), 2)
        self.assertEqual(self.gateway.calls_to("editMessageText"), [])
        self.assertEqual(await self.store.get("map:555:10"), "701")

    async def test_edit_without_mapping_is_relayed_as_new_copy(self):
        action = await self._relay(message(555, 11, "typo", date=1000, edit_date=1005), is_edit=True, now=1005)

        self.assertIs(action, RelayAction.COPIED)
        self.assertEqual(self.gateway.calls_to("editMessageText"), [])

    async def test_edit_window_falls_back_to_now_without_edit_date(self):
        await self._relay(message(555, 10, "hello", date=1000))

        action = await self._relay(message(555, 10, "hello again", date=1000), is_edit=True, now=1090)

        self.assertIs(action, RelayAction.COPIED)

    async def test_owner_reply_goes_to_callback_sender(self):
        reply = message(int(OWNER), 20, "hi there", reply_to=relayed_copy(700, callback_data="555"))

        identity = await self.relay.relay_owner_reply(reply)
        await self.tasks.drain()

        self.assertEqual(identity, "555")
        self.assertEqual(
            self.gateway.calls_to("copyMessage")[0].payload,
            {"chat_id": 555, "from_chat_id": 999, "message_id": 20},
        )

    async def test_owner_reply_reads_profile_link(self):
        reply = message(int(OWNER), 21, "hi", reply_to=relayed_copy(700, url="tg://user?id=12345"))

        identity = await self.relay.relay_owner_reply(reply)
        await self.tasks.drain()

        self.assertEqual(identity, "12345")
        self.assertEqual(self.gateway.calls_to("copyMessage")[0].payload["chat_id"], 12345)

    async def test_owner_reply_to_unrelated_message_is_noop(self):
        reply = message(int(OWNER), 22, "hi", reply_to=relayed_copy(5))

        identity = await self.relay.relay_owner_reply(reply)
        await self.tasks.drain()

        self.assertIsNone(identity)
        self.assertEqual(self.gateway.calls, [])


if __name__ == "__main__":
    unittest.main()
