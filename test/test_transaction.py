import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from fakes import ALICE, GENESIS, GENESIS_SEED, FakeNetwork, settle
from xrpl.models.transactions import Payment

from rippled_remote.config import ServerConfig
from rippled_remote.constants import ResultBand, TxState
from rippled_remote.errors import LocalError, RemoteError
from rippled_remote.remote import Remote
from rippled_remote.transaction import Transaction, is_rejected, result_band, txid_from_signed_blob_hex

URL = "ws://a:6006"
TX_HASH = "E" * 64


def submit_reply(engine_result="tesSUCCESS", code=0):
    def reply(message):
        return {
            "engine_result": engine_result,
            "engine_result_code": code,
            "engine_result_message": "The transaction was applied.",
            "tx_blob": message.get("tx_blob"),
            "tx_json": {"hash": TX_HASH},
        }

    return reply


def ledger_closed(index: int) -> dict:
    return {"type": "ledgerClosed", "ledger_index": index, "ledger_hash": f"{index:064X}", "ledger_time": 780000000 + index}


class TestResultBands(unittest.TestCase):
    def test_codes_fall_in_exactly_one_band(self):
        self.assertEqual(result_band(0), ResultBand.SUCCESS)
        self.assertEqual(result_band(-100), ResultBand.RETRY)
        self.assertEqual(result_band(-250), ResultBand.FAILURE)
        self.assertEqual(result_band(-350), ResultBand.MALFORMED)
        self.assertEqual(result_band(150), ResultBand.CLAIMED)
        self.assertEqual(result_band(-450), ResultBand.LOCAL)

    def test_band_edges_are_contiguous(self):
        edges = {
            -400: ResultBand.LOCAL,
            -399: ResultBand.MALFORMED,
            -300: ResultBand.MALFORMED,
            -299: ResultBand.FAILURE,
            -200: ResultBand.FAILURE,
            -199: ResultBand.RETRY,
            -1: ResultBand.RETRY,
            99: ResultBand.SUCCESS,
            100: ResultBand.CLAIMED,
        }
        for code, band in edges.items():
            self.assertEqual(result_band(code), band, code)

    def test_prefix_when_no_code(self):
        self.assertEqual(result_band(result="tecUNFUNDED_PAYMENT"), ResultBand.CLAIMED)
        self.assertEqual(result_band(result="telINSUF_FEE_P"), ResultBand.LOCAL)
        self.assertIsNone(result_band(result="xyz"))
        self.assertIsNone(result_band())

    def test_numeric_code_wins_over_prefix(self):
        # tefPAST_SEQ carries -190, inside the retry range
        self.assertEqual(result_band(-190, "tefPAST_SEQ"), ResultBand.RETRY)
        self.assertFalse(is_rejected(-190, "tefPAST_SEQ"))
        self.assertEqual(result_band(result="tefPAST_SEQ"), ResultBand.FAILURE)

    def test_rejection(self):
        self.assertTrue(is_rejected(-350))
        self.assertTrue(is_rejected(-250))
        self.assertFalse(is_rejected(-100))
        self.assertFalse(is_rejected(0, "tesSUCCESS"))
        self.assertFalse(is_rejected(result="tecPATH_DRY"))


class TestTransactionBuilders(unittest.TestCase):
    def setUp(self):
        self.remote = Remote()
        self.remote.set_secret(GENESIS, GENESIS_SEED)

    def test_payment(self):
        tx = self.remote.transaction().payment(GENESIS, ALICE, "1/USD/" + GENESIS).destination_tag(0).source_tag(7)
        self.assertEqual(tx.tx_json["TransactionType"], "Payment")
        self.assertEqual(tx.tx_json["Amount"], {"currency": "USD", "issuer": GENESIS, "value": "1"})
        self.assertEqual(tx.tx_json["DestinationTag"], 0)
        self.assertEqual(tx.tx_json["SourceTag"], 7)
        self.assertEqual(tx._secret, GENESIS_SEED)

    def test_flags(self):
        tx = self.remote.transaction().payment(GENESIS, ALICE, 10).set_flags(["PartialPayment", "NoRippleDirect"])
        self.assertEqual(tx.tx_json["Flags"], 0x00020000 | 0x00010000)

        with self.assertRaises(LocalError) as cm:
            tx.set_flags("Sell")
        self.assertEqual(cm.exception.error, "invalidFlag")

    def test_transfer_rate(self):
        tx = self.remote.transaction().account_set(GENESIS).transfer_rate(1_002_000_000)
        self.assertEqual(tx.tx_json["TransferRate"], 1_002_000_000)
        with self.assertRaises(LocalError):
            tx.transfer_rate(999)

    def test_offer_create_expiration(self):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        tx = self.remote.transaction().offer_create(GENESIS, "1/USD/" + ALICE, 1000, expiration=expires, cancel_sequence=4)
        self.assertEqual(tx.tx_json["Expiration"], 946_771_200)
        self.assertEqual(tx.tx_json["OfferSequence"], 4)
        self.assertEqual(tx.tx_json["TakerGets"], "1000")

    def test_paths(self):
        tx = self.remote.transaction().payment(GENESIS, ALICE, 10)
        tx.paths([[{"account": ALICE, "currency": "USD", "issuer": GENESIS}]])
        self.assertEqual(tx.tx_json["Paths"], [[{"account": ALICE, "issuer": GENESIS, "currency": "USD"}]])
        with self.assertRaises(LocalError):
            tx.path_add([{"account": "nope"}])

    def test_trust_line_allows_zero_limit(self):
        tx = self.remote.transaction().ripple_line_set(GENESIS, {"currency": "USD", "issuer": ALICE, "value": "0"})
        self.assertEqual(tx.tx_json["LimitAmount"]["value"], "0")
        self.assertNotIn("QualityIn", tx.tx_json)

    def test_sign_sets_hash(self):
        tx = self.remote.transaction().payment(GENESIS, ALICE, 1_000_000)
        tx.tx_json.update({"Sequence": 1, "Fee": "12"})
        blob = tx.sign()
        self.assertEqual(tx.hash, txid_from_signed_blob_hex(blob))
        self.assertEqual(len(tx.hash), 64)
        self.assertIn("TxnSignature", tx.tx_json)

    def test_from_model(self):
        tx = Transaction.from_model(self.remote, Payment(account=GENESIS, destination=ALICE, amount="10"))
        self.assertEqual(tx.tx_json["TransactionType"], "Payment")
        self.assertEqual(tx.tx_json["Amount"], "10")
        self.assertEqual(tx._secret, GENESIS_SEED)


class TestLocalFailures(unittest.IsolatedAsyncioTestCase):
    async def assert_fails(self, tx, code):
        callback, errors = MagicMock(), MagicMock()
        tx.on("error", errors).submit(callback)
        callback.assert_called_once()
        self.assertEqual(callback.call_args.args[0], code)
        errors.assert_called_once()
        with self.assertRaises(RemoteError) as cm:
            await tx.final()
        self.assertEqual(cm.exception.error, code)

    async def test_invalid_account(self):
        await self.assert_fails(Remote().transaction(), "tejInvalidAccount")

    async def test_unknown_secret(self):
        await self.assert_fails(Remote().transaction().payment(GENESIS, ALICE, 10), "tejSecretUnknown")

    async def test_untrusted_remote_signing(self):
        remote = Remote(local_signing=False)
        remote.set_secret(GENESIS, GENESIS_SEED)
        await self.assert_fails(remote.transaction().payment(GENESIS, ALICE, 10), "tejServerUntrusted")


class TestSubmission(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.network = FakeNetwork()
        self.network.replies.update(
            {
                "ledger_entry": {"node": {"Account": GENESIS, "Balance": "100000000000", "Sequence": 7}},
                "submit": submit_reply(),
                "transaction_entry": FakeNetwork.Error("transactionNotFound"),
            }
        )
        self.remote = None

    async def asyncTearDown(self):
        if self.remote is not None:
            await self.remote.close()

    async def connect(self, **kwargs):
        self.remote = Remote([ServerConfig.from_url(URL)], transport_factory=self.network, reconnect_base=5.0, **kwargs)
        self.remote.set_secret(GENESIS, GENESIS_SEED)
        self.remote.connect()
        await settle()
        return self.remote

    def payment(self):
        return self.remote.transaction().payment(GENESIS, ALICE, 1_000_000)

    async def test_one_sequence_fetch_for_concurrent_and_later_submits(self):
        await self.connect()
        first, second = self.payment(), self.payment()
        first.submit()
        second.submit()
        await settle()

        later = self.payment().submit()
        await settle()

        self.assertEqual(len(self.network.sent("ledger_entry")), 1)
        self.assertEqual([t.tx_json["Sequence"] for t in (first, second, later)], [7, 8, 9])
        self.assertEqual(len(self.network.sent("submit")), 3)

    async def test_locally_signed_submit(self):
        await self.connect()
        proposed = MagicMock()
        tx = self.payment().on("proposed", proposed).submit()
        await settle()

        submitted = self.network.sent("submit")[0]
        self.assertIn("tx_blob", submitted)
        self.assertNotIn("secret", submitted)
        self.assertEqual(tx.tx_json["Fee"], "15")
        self.assertEqual(tx.state, TxState.CLIENT_PROPOSED)
        self.assertEqual(tx.hash, TX_HASH)
        info = proposed.call_args.args[0]
        self.assertEqual(info["result"], "tesSUCCESS")
        self.assertFalse(info["rejected"])

    async def test_missing_then_lost_finalizes_once(self):
        await self.connect()
        seen = []
        tx = self.payment()
        for name in ("pending", "lost", "final"):
            tx.on(name, lambda *args, name=name: seen.append(name))
        callback = MagicMock()
        tx.submit(callback)
        await settle()
        self.assertEqual(tx.submit_index, 101)

        transport = self.network.latest(URL)
        transport.feed(ledger_closed(106))
        await settle()
        self.assertEqual(tx.state, TxState.CLIENT_MISSING)

        transport.feed(ledger_closed(110))
        await settle()
        self.assertEqual(tx.state, TxState.CLIENT_LOST)

        transport.feed(ledger_closed(111))
        await settle()

        self.assertEqual(seen, ["pending", "lost", "final"])
        self.assertEqual(len(self.network.sent("transaction_entry")), 2)
        callback.assert_called_once()
        self.assertEqual(callback.call_args.args[0], "tejLost")
        with self.assertRaises(RemoteError) as cm:
            await tx.final()
        self.assertEqual(cm.exception.error, "tejLost")

    async def test_found_in_closed_ledger(self):
        self.network.replies["transaction_entry"] = {
            "ledger_index": 102,
            "metadata": {"TransactionResult": "tesSUCCESS"},
            "tx_json": {"hash": TX_HASH},
        }
        await self.connect()
        final = MagicMock()
        tx = self.payment().on("final", final)
        tx.submit()
        await settle()

        self.network.latest(URL).feed(ledger_closed(102))
        self.network.latest(URL).feed(ledger_closed(103))
        await settle()

        final.assert_called_once()
        self.assertEqual(tx.state, "tesSUCCESS")
        self.assertEqual(len(self.network.sent("transaction_entry")), 1)
        self.assertEqual(self.network.sent("transaction_entry")[0]["ledger_hash"], f"{102:064X}")
        result = await tx.final()
        self.assertEqual(result["metadata"]["TransactionResult"], "tesSUCCESS")

    async def test_rejected_submit_hands_sequence_back(self):
        self.network.replies["submit"] = submit_reply("temBAD_AMOUNT", -350)
        await self.connect()
        proposed = MagicMock()
        tx = self.payment().on("proposed", proposed)
        tx.submit()
        await settle()

        self.assertTrue(proposed.call_args.args[0]["rejected"])
        self.assertEqual(self.remote.account_seq(GENESIS), 7)

    async def test_retry_band_submit_keeps_sequence(self):
        self.network.replies["submit"] = submit_reply("terQUEUED", -100)
        await self.connect()
        proposed = MagicMock()
        tx = self.payment().on("proposed", proposed)
        tx.submit()
        await settle()

        self.assertFalse(proposed.call_args.args[0]["rejected"])
        self.assertEqual(tx.state, TxState.CLIENT_PROPOSED)
        self.assertEqual(self.remote.account_seq(GENESIS), 8)

    async def test_past_seq_code_in_retry_range_keeps_sequence(self):
        self.network.replies["submit"] = submit_reply("tefPAST_SEQ", -190)
        await self.connect()
        self.payment().submit()
        await settle()

        self.assertEqual(self.remote.account_seq(GENESIS), 8)

    async def test_unanswered_sequence_fetch_ends_lost(self):
        self.network.replies["ledger_entry"] = lambda message: None
        await self.connect()
        callback = MagicMock()
        lost = MagicMock()
        tx = self.payment().on("lost", lost)
        tx.submit(callback)
        await settle()
        self.assertEqual(tx.state, TxState.CLIENT_SUBMITTED)

        transport = self.network.latest(URL)
        for index in range(102, 111):
            transport.feed(ledger_closed(index))
        await settle()

        self.assertTrue(tx.finalized)
        self.assertEqual(tx.state, TxState.CLIENT_LOST)
        lost.assert_called_once()
        callback.assert_called_once()
        self.assertEqual(callback.call_args.args[0], "tejLost")
        self.assertTrue(tx._task.done())
        with self.assertRaises(RemoteError) as cm:
            await tx.final()
        self.assertEqual(cm.exception.error, "tejLost")

        # A late answer must not resurrect the submission
        fetch = transport.commands("ledger_entry")[0]
        transport.respond(fetch, {"node": {"Account": GENESIS, "Sequence": 7}})
        await settle()
        self.assertEqual(self.network.sent("submit"), [])

    async def test_unanswered_remote_signed_submit_ends_lost(self):
        self.network.replies["submit"] = lambda message: None
        await self.connect(local_signing=False, trusted=True)
        tx = self.payment().submit()
        await settle()
        self.assertIsNone(tx.hash)

        transport = self.network.latest(URL)
        for index in range(102, 110):
            transport.feed(ledger_closed(index))
        await settle()
        self.assertFalse(tx.finalized)

        transport.feed(ledger_closed(110))
        await settle()
        self.assertEqual(tx.state, TxState.CLIENT_LOST)

        transport.respond(transport.commands("submit")[0], submit_reply()({}))
        await settle()
        self.assertEqual(tx.state, TxState.CLIENT_LOST)
        self.assertEqual(self.network.sent("transaction_entry"), [])

    async def test_submit_error_is_terminal(self):
        self.network.replies["submit"] = FakeNetwork.Error("tooBusy")
        await self.connect()
        errors = MagicMock()
        tx = self.payment().on("error", errors)
        tx.submit()
        await settle()

        self.assertEqual(tx.state, TxState.REMOTE_ERROR)
        errors.assert_called_once()
        self.network.latest(URL).feed(ledger_closed(102))
        await settle()
        self.assertEqual(self.network.sent("transaction_entry"), [])
        with self.assertRaises(RemoteError) as cm:
            await tx.final()
        self.assertEqual(cm.exception.remote["error"], "tooBusy")

    async def test_sequence_fetch_falls_back_to_current_ledger(self):
        def ledger_entry(message):
            if "ledger_hash" in message:
                return None
            return {"node": {"Account": GENESIS, "Sequence": 3}}

        self.network.replies["ledger_entry"] = ledger_entry
        await self.connect()
        tx = self.payment().submit()
        await settle()
        # No answer for the closed ledger yet; fail it the way the server would
        transport = self.network.latest(URL)
        closed_fetch = transport.commands("ledger_entry")[0]
        transport.respond_error(closed_fetch, "actNotFound")
        await settle()

        fetches = transport.commands("ledger_entry")
        self.assertEqual(len(fetches), 2)
        self.assertEqual(fetches[1]["ledger_index"], 101)
        self.assertEqual(tx.tx_json["Sequence"], 3)

    async def test_remote_signing_sends_secret(self):
        await self.connect(local_signing=False, trusted=True)
        tx = self.payment().build_path(True)
        tx.submit()
        await settle()

        submitted = self.network.sent("submit")[0]
        self.assertEqual(submitted["secret"], GENESIS_SEED)
        self.assertTrue(submitted["build_path"])
        self.assertNotIn("Sequence", submitted["tx_json"])
        self.assertNotIn("Fee", submitted["tx_json"])
        self.assertEqual(self.network.sent("ledger_entry"), [])
        self.assertEqual(tx.hash, TX_HASH)
