import unittest

from arch_backend.errors import Forbidden, NotFound
from arch_backend.membership import (
    is_admin,
    is_member,
    load_admin_arch,
    load_member_arch,
    member_role,
)
from arch_backend.records import Lifecycle, MemberRole
from arch_backend.storage import arch_id_from_path, media_path
from arch_backend.tests.testing_utils import StoreTestCase


class MembershipTests(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("Alice")
        self.bob = self.make_user("Bob")
        self.eve = self.make_user("Eve")
        self.arch = self.make_arch(self.alice, self.bob)

    def test_roles(self):
        self.assertEqual(member_role(self.arch, self.alice.user_id), MemberRole.ADMIN)
        self.assertEqual(member_role(self.arch, self.bob.user_id), MemberRole.MEMBER)
        self.assertIsNone(member_role(self.arch, self.eve.user_id))
        self.assertTrue(is_member(self.arch, self.bob.user_id))
        self.assertFalse(is_admin(self.arch, self.bob.user_id))

    def test_load_member_arch(self):
        self.assertEqual(
            load_member_arch(self.db, self.arch.arch_id, self.bob.user_id).arch_id,
            self.arch.arch_id,
        )
        with self.assertRaises(Forbidden) as ctx:
            load_member_arch(self.db, self.arch.arch_id, self.eve.user_id)
        self.assertEqual(ctx.exception.message, "You are not a member of this arch")
        with self.assertRaises(NotFound):
            load_member_arch(self.db, "missing", self.bob.user_id)

    def test_deleted_arch_is_not_found(self):
        self.db.update_arch(self.arch.arch_id, lifecycle=Lifecycle.DELETED)
        with self.assertRaises(NotFound):
            load_member_arch(self.db, self.arch.arch_id, self.alice.user_id)

    def test_load_admin_arch(self):
        load_admin_arch(self.db, self.arch.arch_id, self.alice.user_id)
        with self.assertRaises(Forbidden) as ctx:
            load_admin_arch(self.db, self.arch.arch_id, self.bob.user_id)
        self.assertEqual(ctx.exception.message, "Admin access required")

    def test_promoted_member_becomes_admin(self):
        self.db.set_member_role(self.arch.arch_id, self.bob.user_id, MemberRole.ADMIN)
        load_admin_arch(self.db, self.arch.arch_id, self.bob.user_id)


class MediaPathTests(unittest.TestCase):
    def test_media_path_is_scoped_and_sanitized(self):
        path = media_path("arch1", "../My Photo (1).jpg")
        self.assertTrue(path.startswith("arches/arch1/media/"))
        self.assertTrue(path.endswith("_My_Photo_1_.jpg"))
        self.assertEqual(arch_id_from_path(path), "arch1")

    def test_arch_id_from_path_rejects_foreign_paths(self):
        self.assertIsNone(arch_id_from_path("users/u1/avatar.png"))
        self.assertIsNone(arch_id_from_path("arches/arch1/other/file.png"))
        self.assertIsNone(arch_id_from_path("arches/arch1/media/../../arch2/media/x.png"))


if __name__ == "__main__":
    unittest.main()
