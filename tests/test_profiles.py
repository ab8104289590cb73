import unittest

from errors import ProfileNotFound
from profiles import (
    get_combined_profile,
    get_role_profile,
    get_user_profile,
    list_profiles_by_role,
    update_role_profile,
    update_user_profile,
)
from tests.support import MongoTestCase


class TestProfileDirectory(MongoTestCase):

    def setUp(self):
        super().setUp()
        self.make_user("t1", "mentor", "Tina", bio="Backend lead", hourly_rate=50)
        self.make_user("m1", "mentee", "Max", languages=["en", "de"])

    def test_registration_writes_global_and_role_documents(self):
        self.assertEqual(get_user_profile("t1")["role"], "mentor")
        self.assertEqual(get_role_profile("t1", "mentor")["hourly_rate"], 50)
        self.assertIsNone(get_role_profile("t1", "mentee"))

    def test_combined_profile(self):
        combined = get_combined_profile("m1")
        self.assertEqual(combined["display_name"], "Max")
        self.assertEqual(combined["mentee_data"]["languages"], ["en", "de"])
        self.assertIsNone(get_combined_profile("nobody"))

    def test_updates_skip_unset_fields(self):
        update_user_profile("t1", {"display_name": "Tina K", "avatar_url": None, "role": "mentee"})
        update_role_profile("t1", "mentor", {"bio": None, "skills": ["rust"]})

        user = get_user_profile("t1")
        self.assertEqual(user["display_name"], "Tina K")
        self.assertEqual(user["role"], "mentor")
        self.assertTrue(user["avatar_url"])
        role_data = get_role_profile("t1", "mentor")
        self.assertEqual(role_data["bio"], "Backend lead")
        self.assertEqual(role_data["skills"], ["rust"])

    def test_update_unknown_user(self):
        with self.assertRaises(ProfileNotFound):
            update_user_profile("nobody", {"display_name": "X"})

    def test_list_by_role(self):
        mentors = list_profiles_by_role("mentor")
        self.assertEqual([p.id for p in mentors], ["t1"])
        self.assertEqual(mentors[0].bio, "Backend lead")
        with self.assertRaises(ValueError):
            list_profiles_by_role("admin")


if __name__ == "__main__":
    unittest.main()
