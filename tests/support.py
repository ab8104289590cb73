import itertools
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

import mongomock

import chat
import database
from logger import logger
from profiles import create_user_documents
from schemas import MenteeProfile, MentorProfile, UserProfile


class MongoTestCase(unittest.TestCase):
    """Runs each test against a fresh in-memory MongoDB."""

    def setUp(self):
        self.db = mongomock.MongoClient().db
        database.use_database(self.db)
        chat.message_feed = chat.LiveFeed("messages")
        chat.conversation_feed = chat.LiveFeed("conversations")

    def tearDown(self):
        database.use_database(None)

    def use_ticking_clock(self):
        """Make every timestamp taken by the chat module one second later than the last."""
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        ticks = itertools.count()
        patcher = mock.patch("chat.now", side_effect=lambda: start + timedelta(seconds=next(ticks)))
        patcher.start()
        self.addCleanup(patcher.stop)

    def capture_logs(self, level="WARNING"):
        """Collect formatted log lines at `level` and above for this test."""
        lines = []
        handler_id = logger.add(lines.append, level=level, format="{level} {message}")
        self.addCleanup(logger.remove, handler_id)
        return lines

    def make_user(self, user_id, role, name, **details):
        profile = UserProfile(
            email=f"{user_id}@mentormatch.io",
            display_name=name,
            role=role,
            avatar_url=f"https://img.mentormatch.io/{user_id}.png",
        )
        role_data = MentorProfile(**details) if role == "mentor" else MenteeProfile(**details)
        create_user_documents(user_id, profile, role_data)

    def count(self, collection_name, filter_dict=None):
        return self.db[collection_name].count_documents(filter_dict or {})
