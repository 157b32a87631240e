import unittest
from unittest.mock import MagicMock

from fakes import ALICE, BOB, GENESIS

from rippled_remote.remote import Remote


class TestPathFind(unittest.TestCase):
    def setUp(self):
        self.remote = Remote()
        self.remote.request = MagicMock()

    def update(self, src=GENESIS, dst=ALICE):
        return {"type": "path_find", "source_account": src, "destination_account": dst, "alternatives": []}

    def test_create_sends_request(self):
        self.remote.path_find(GENESIS, ALICE, "1/USD/" + BOB, [{"currency": "XRP"}])
        req = self.remote.request.call_args.args[0]
        self.assertEqual(req.message["subcommand"], "create")
        self.assertEqual(req.message["destination_amount"], {"currency": "USD", "issuer": BOB, "value": "1"})
        self.assertEqual(req.message["source_currencies"], [{"currency": "XRP"}])

    def test_updates_for_matching_pair_only(self):
        path_find = self.remote.path_find(GENESIS, ALICE, 100)
        updates, everything = MagicMock(), MagicMock()
        path_find.on("update", updates)
        self.remote.events.on("path_find_all", everything)

        self.remote._handle_message(self.update())
        self.remote._handle_message(self.update(dst=BOB))

        updates.assert_called_once()
        self.assertEqual(everything.call_count, 2)

    def test_new_session_supersedes_old(self):
        old = self.remote.path_find(GENESIS, ALICE, 100)
        ended, superceded = MagicMock(), MagicMock()
        old.on("end", ended)
        old.on("superceded", superceded)

        new = self.remote.path_find(GENESIS, BOB, 100)
        old_updates = MagicMock()
        old.on("update", old_updates)
        self.remote._handle_message(self.update(dst=ALICE))

        ended.assert_called_once_with()
        superceded.assert_called_once_with()
        old_updates.assert_not_called()
        self.assertIsNot(old, new)

    def test_close(self):
        path_find = self.remote.path_find(GENESIS, ALICE, 100)
        closed = MagicMock()
        path_find.on("close", closed)
        path_find.close()
        closed.assert_called_once_with()
        self.assertEqual(self.remote.request.call_args.args[0].message["subcommand"], "close")
