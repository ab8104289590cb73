import asyncio
import unittest
from unittest import mock

from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from chat import send_message
from main import app, put_latest
from tests.support import MongoTestCase


class TestApi(MongoTestCase):

    def setUp(self):
        super().setUp()
        self.client = TestClient(app)
        self.register("t1", "mentor", "Tina", {"skills": ["python"], "hourly_rate": 30})
        self.register("m1", "mentee", "Max", {"bio": "Learning python"})

    def register(self, user_id, role, name, details):
        response = self.client.post("/profiles", json={
            "user_id": user_id,
            "profile": {"email": f"{user_id}@mentormatch.io", "display_name": name, "role": role},
            "details": details,
        })
        self.assertEqual(response.status_code, 201)

    def swipe(self, actor, target, direction):
        return self.client.post(f"/swipe?profile_id={actor}", json={"target_id": target, "direction": direction})

    def test_swipe_match_and_chat_flow(self):
        self.assertEqual(self.swipe("m1", "t1", "right").json()["match"], False)
        result = self.swipe("t1", "m1", "right").json()
        self.assertEqual(result, {"ok": True, "match": True, "match_id": "t1_m1"})

        matches = self.client.get("/matches?profile_id=m1").json()
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0]["other"]["id"], "t1")

        conversations = self.client.get("/conversations?profile_id=t1").json()
        self.assertEqual(conversations[0]["id"], "m1_t1")
        self.assertEqual(conversations[0]["other"]["display_name"], "Max")

        response = self.client.post("/conversations/m1_t1/messages?sender_id=t1", json={"text": "Welcome!"})
        self.assertEqual(response.status_code, 201)
        messages = self.client.get("/conversations/m1_t1/messages").json()
        self.assertEqual([m["sender_id"] for m in messages], ["m1", "t1"])

        self.assertEqual(self.client.get("/discover?profile_id=m1&role=mentee").json(), [])

    def test_discover(self):
        candidates = self.client.get("/discover?profile_id=m1&role=mentee").json()
        self.assertEqual([c["id"] for c in candidates], ["t1"])
        self.assertEqual(candidates[0]["hourly_rate"], 30)

    def test_discover_unavailable(self):
        with mock.patch("profiles.get_documents", side_effect=PyMongoError("down")):
            response = self.client.get("/discover?profile_id=m1&role=mentee")
        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.json()["retryable"])

    def test_register_rejects_key_separator_in_id(self):
        response = self.client.post("/profiles", json={
            "user_id": "a_b",
            "profile": {"email": "ab@mentormatch.io", "display_name": "Ab", "role": "mentee"},
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.count("users", {"_id": "a_b"}), 0)

    def test_bad_swipes(self):
        self.assertEqual(self.swipe("m1", "m1", "right").status_code, 400)
        self.assertEqual(self.swipe("m1", "t1", "sideways").status_code, 422)

    def test_profile_endpoints(self):
        self.assertEqual(self.client.get("/profiles/me?profile_id=nobody").status_code, 404)
        updated = self.client.put("/profiles/me?profile_id=t1", json={"display_name": "Tina K", "bio": "Staff eng"}).json()
        self.assertEqual(updated["display_name"], "Tina K")
        self.assertEqual(updated["mentor_data"]["bio"], "Staff eng")

    def test_direct_conversation(self):
        opened = self.client.post("/conversations?profile_id=m1", json={"other_id": "t1"}).json()
        self.assertEqual(opened["id"], "m1_t1")
        self.assertEqual(self.client.get("/conversations/m1_t1/messages").json(), [])
        self.assertEqual(self.client.get("/conversations/zz_yy/messages").status_code, 404)

    def test_non_participant_cannot_post(self):
        self.register("m2", "mentee", "Mia", {})
        self.client.post("/conversations?profile_id=m1", json={"other_id": "t1"})
        response = self.client.post("/conversations/m1_t1/messages?sender_id=m2", json={"text": "hi"})
        self.assertEqual(response.status_code, 403)

    def test_message_socket_streams_snapshots(self):
        self.client.post("/conversations?profile_id=m1", json={"other_id": "t1"})
        with self.client.websocket_connect("/ws/conversations/m1_t1") as ws:
            self.assertEqual(ws.receive_json(), [])
            send_message("m1_t1", "m1", "Max", "", "hello")
            snapshot = ws.receive_json()
        self.assertEqual([m["text"] for m in snapshot], ["hello"])



class TestPutLatest(unittest.TestCase):

    def test_slow_consumer_only_sees_newest_snapshot(self):
        queue = asyncio.Queue(maxsize=1)
        for snapshot in (["a"], ["a", "b"], ["a", "b", "c"]):
            put_latest(queue, snapshot)
        self.assertEqual(queue.qsize(), 1)
        self.assertEqual(queue.get_nowait(), ["a", "b", "c"])

if __name__ == "__main__":
    unittest.main()
