"""
Unit tests for the transaction submission engine
"""

import unittest
from unittest.mock import MagicMock, patch

from solana_volume.modules.submission import SubmissionEngine, SubmitOptions
from solana_volume.modules.fee_oracle import FeeQuote
from solana_volume.infra.events import EventBus, EventKind
from solana_volume.errors import (
    ErrorCode,
    InsufficientBalanceError,
    LedgerRejectionError,
    RpcError,
    StaleReferenceError,
    ValidationError,
)
from solana_volume.types import (
    DRY_RUN_SIGNATURE,
    BlockReference,
    MintInfo,
    OperationStatus,
    SignatureStatus,
    TransferIntent,
)

PAYER = "PayerWallet111"
DEST = "DestWallet222"


class SubmissionTestCase(unittest.TestCase):
    """Shared mocks: RPC, oracle, builder and signer"""

    def setUp(self):
        self.rpc = MagicMock()
        self.rpc.get_latest_block_reference.return_value = BlockReference("hash1", 100)
        self.rpc.send_raw_transaction.return_value = "sig1"
        self.rpc.confirm_transaction.return_value = SignatureStatus("sig1", "confirmed")
        self.landed = {}
        self.rpc.get_signature_statuses.side_effect = self._statuses

        self.oracle = MagicMock()
        self.oracle.quote.return_value = FeeQuote(
            current=5000, optimal=6000, spike_threshold=7500, sample_count=10
        )

        self.builder = MagicMock()
        self.builder.build_transfer.return_value = b"unsigned"

        self.signer = MagicMock()
        self.signer.pubkey = PAYER
        self.signer.sign_transaction.return_value = (b"signed", "sig1")

        self.events = EventBus()
        self.received = []
        self.events.on_any(self.received.append)

        self.engine = SubmissionEngine(
            self.rpc,
            self.oracle,
            events=self.events,
            tx_builder=self.builder,
            fetch_actual_fee=False,
        )
        self.options = SubmitOptions(
            skip_preflight=False,
            max_retries=2,
            retry_delay=0.01,
            confirmation_timeout=1.0,
            compute_units=200_000,
            commitment="confirmed",
            dry_run=False,
        )
        self.intent = TransferIntent(PAYER, DEST, 1_000_000)

        sleep_patcher = patch("solana_volume.modules.submission.time.sleep")
        self.mock_sleep = sleep_patcher.start()
        self.addCleanup(sleep_patcher.stop)

    def _statuses(self, signatures, search_history=False):
        return [self.landed.get(s) for s in signatures]

    def kinds(self):
        return [e.kind for e in self.received]


class TestSubmitSuccess(SubmissionTestCase):

    def test_confirmed_first_attempt(self):
        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertEqual(result.status, OperationStatus.CONFIRMED)
        self.assertEqual(result.signature, "sig1")
        self.assertEqual(result.attempts, 1)
        self.assertEqual(result.amount, 1_000_000)
        # 5000 base + 6000 microlamports * 200k CU
        self.assertEqual(result.fee_lamports, 6200)
        self.assertIsNotNone(result.confirmation_latency_ms)
        self.assertEqual(self.kinds(), [EventKind.TX_SENT, EventKind.TX_CONFIRMED])

    def test_optimal_fee_attached(self):
        self.engine.submit(self.intent, self.signer, self.options)

        kwargs = self.builder.build_transfer.call_args[1]
        self.assertEqual(kwargs["priority_fee"], 6000)
        self.assertEqual(kwargs["compute_units"], 200_000)

    def test_multiple_intents_one_transaction(self):
        intents = [TransferIntent(PAYER, DEST, 10), TransferIntent(PAYER, "Other333", 20)]

        result = self.engine.submit(intents, self.signer, self.options, index=4)

        self.assertTrue(result.is_confirmed)
        self.assertEqual(result.index, 4)
        self.assertEqual(result.amount, 30)
        self.assertEqual(result.destinations, [DEST, "Other333"])
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 1)

    def test_actual_fee_fetched(self):
        engine = SubmissionEngine(
            self.rpc, self.oracle, events=self.events, tx_builder=self.builder, fetch_actual_fee=True
        )
        self.rpc.get_transaction_fee.return_value = 5050

        result = engine.submit(self.intent, self.signer, self.options)

        self.assertEqual(result.fee_lamports, 5050)
        self.rpc.get_transaction_fee.assert_called_once_with("sig1")


class TestFeeSpike(SubmissionTestCase):

    def test_spike_skips_without_sending(self):
        options = SubmitOptions(priority_fee=10_000, max_retries=2, confirmation_timeout=1.0)

        result = self.engine.submit(self.intent, self.signer, options)

        self.assertEqual(result.status, OperationStatus.SKIPPED)
        self.assertEqual(result.error_code, ErrorCode.TX_FEE_SPIKE.value)
        self.assertIn("7500", result.error)
        self.rpc.send_raw_transaction.assert_not_called()
        self.assertEqual(self.kinds(), [EventKind.FEE_SPIKE_DETECTED])

    def test_fixed_fee_without_spike_check(self):
        options = SubmitOptions(
            priority_fee=10_000, check_fee_spike=False, max_retries=0, confirmation_timeout=1.0
        )

        result = self.engine.submit(self.intent, self.signer, options)

        self.assertTrue(result.is_confirmed)
        self.oracle.quote.assert_not_called()
        self.assertEqual(self.builder.build_transfer.call_args[1]["priority_fee"], 10_000)


class TestIdempotency(SubmissionTestCase):

    def test_landed_after_timeout_not_resent(self):
        """A timed-out attempt that actually landed is reported, not resent"""
        self.rpc.confirm_transaction.return_value = None
        self.landed["sig1"] = SignatureStatus("sig1", "confirmed")

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        self.assertEqual(result.signature, "sig1")
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 1)
        self.rpc.get_signature_statuses.assert_called_with(["sig1"], search_history=True)
        self.assertNotIn(EventKind.TX_RETRY, self.kinds())

    def test_landed_with_error_after_timeout(self):
        self.rpc.confirm_transaction.return_value = None
        self.landed["sig1"] = SignatureStatus(
            "sig1", "confirmed", err={"InstructionError": [0, {"Custom": 7}]}
        )

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.assertEqual(result.error_code, ErrorCode.TX_LEDGER_REJECTED.value)
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 1)

    def test_earlier_attempt_landing_late_stops_resend(self):
        """Attempt 1 lands only after attempt 2 was sent; attempt 3 is never sent"""
        self.rpc.confirm_transaction.return_value = None
        self.signer.sign_transaction.side_effect = [(b"s1", "sig1"), (b"s2", "sig2"), (b"s3", "sig3")]

        def send(signed, **kwargs):
            if signed == b"s2":
                self.landed["sig1"] = SignatureStatus("sig1", "confirmed")
            return {b"s1": "sig1", b"s2": "sig2", b"s3": "sig3"}[signed]

        self.rpc.send_raw_transaction.side_effect = send

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        self.assertEqual(result.signature, "sig1")
        self.assertEqual(result.attempts, 2)
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 2)
        self.rpc.get_signature_statuses.assert_called_with(["sig1", "sig2"], search_history=True)

    def test_later_rejection_settled_by_earlier_landing(self):
        """A later attempt rejected because an earlier one already moved the funds"""
        self.rpc.confirm_transaction.return_value = None
        self.signer.sign_transaction.side_effect = [(b"s1", "sig1"), (b"s2", "sig2")]

        def send(signed, **kwargs):
            if signed == b"s2":
                self.landed["sig1"] = SignatureStatus("sig1", "confirmed")
                raise InsufficientBalanceError.for_transfer(PAYER, 1_000_000, 0)
            return "sig1"

        self.rpc.send_raw_transaction.side_effect = send

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        self.assertEqual(result.signature, "sig1")
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 2)

    def test_unknown_after_timeout_resends(self):
        self.rpc.confirm_transaction.side_effect = [None, SignatureStatus("sig2", "confirmed")]
        self.signer.sign_transaction.side_effect = [(b"s1", "sig1"), (b"s2", "sig2")]
        self.rpc.send_raw_transaction.side_effect = ["sig1", "sig2"]

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        self.assertEqual(result.signature, "sig2")
        self.assertEqual(result.attempts, 2)
        self.assertEqual(self.rpc.get_latest_block_reference.call_count, 2)


class TestFailureClassification(SubmissionTestCase):

    def test_ledger_rejection_not_retried(self):
        self.rpc.confirm_transaction.return_value = SignatureStatus(
            "sig1", "confirmed", err={"InstructionError": [0, {"Custom": 5}]}
        )

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.assertEqual(result.error_code, ErrorCode.TX_LEDGER_REJECTED.value)
        self.assertEqual(result.signature, "sig1")
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 1)
        self.mock_sleep.assert_not_called()
        self.assertEqual(self.kinds(), [EventKind.TX_SENT, EventKind.TX_FAILED])

    def test_simulation_failure_not_retried(self):
        self.rpc.send_raw_transaction.side_effect = LedgerRejectionError.simulation_failed(
            {"InstructionError": [0, {"Custom": 5}]}
        )

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 1)

    def test_insufficient_funds_not_retried(self):
        self.rpc.confirm_transaction.return_value = SignatureStatus(
            "sig1", "confirmed", err={"InstructionError": [0, {"Custom": 1}]}
        )

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertEqual(result.error_code, ErrorCode.TX_INSUFFICIENT_BALANCE.value)
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 1)

    def test_stale_reference_retried_with_fresh_blockhash(self):
        fresh = BlockReference("hash2", 200)
        self.rpc.get_latest_block_reference.side_effect = [BlockReference("hash1", 100), fresh]
        self.rpc.send_raw_transaction.side_effect = [StaleReferenceError.not_found(), "sig2"]
        self.signer.sign_transaction.side_effect = [(b"s1", "sig1"), (b"s2", "sig2")]
        self.rpc.confirm_transaction.return_value = SignatureStatus("sig2", "confirmed")

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        self.assertEqual(result.signature, "sig2")
        self.assertEqual(result.attempts, 2)
        self.assertEqual(self.builder.build_transfer.call_args_list[1][0][2], fresh)
        self.assertEqual(self.mock_sleep.call_count, 1)
        self.assertIn(EventKind.TX_RETRY, self.kinds())

    def test_retries_exhausted(self):
        self.rpc.send_raw_transaction.side_effect = RpcError.timeout("https://rpc.example", 30)

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.assertEqual(result.attempts, 3)
        self.assertTrue(result.error.startswith("Gave up after 3 attempts"))
        self.assertEqual(result.error_code, ErrorCode.RPC_TIMEOUT.value)
        self.assertEqual(self.rpc.send_raw_transaction.call_count, 3)
        self.assertEqual(self.mock_sleep.call_count, 2)
        # before attempts 2 and 3, and once more before giving up
        self.assertEqual(self.rpc.get_signature_statuses.call_count, 3)

    def test_source_mismatch_fails_without_sending(self):
        intent = TransferIntent("SomeoneElse", DEST, 100)

        result = self.engine.submit(intent, self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.assertEqual(result.error_code, ErrorCode.INVALID_INPUT.value)
        self.oracle.quote.assert_not_called()
        self.rpc.send_raw_transaction.assert_not_called()

    def test_unexpected_error_not_retried(self):
        self.builder.build_transfer.side_effect = RuntimeError("boom")

        result = self.engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.assertEqual(result.error_code, ErrorCode.TX_SEND_FAILED.value)
        self.assertIn("boom", result.error)
        self.assertEqual(self.builder.build_transfer.call_count, 1)


class TestTokenTransfers(SubmissionTestCase):

    def test_mint_info_passed_to_builder(self):
        info = MintInfo("Mint111", 6, "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
        self.rpc.get_mint_info.return_value = info
        intents = [TransferIntent(PAYER, DEST, 10, mint="Mint111"), TransferIntent(PAYER, "Other333", 20)]

        result = self.engine.submit(intents, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        self.rpc.get_mint_info.assert_called_once_with("Mint111")
        self.assertEqual(self.builder.build_transfer.call_args[1]["mints"], {"Mint111": info})

    def test_sol_transfer_skips_mint_lookup(self):
        self.engine.submit(self.intent, self.signer, self.options)

        self.rpc.get_mint_info.assert_not_called()
        self.assertEqual(self.builder.build_transfer.call_args[1]["mints"], {})

    def test_unknown_mint_fails_without_sending(self):
        self.rpc.get_mint_info.side_effect = ValidationError.invalid("mint", "mint account Bad111 not found")

        result = self.engine.submit(TransferIntent(PAYER, DEST, 10, mint="Bad111"), self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.assertEqual(result.mint, "Bad111")
        self.assertEqual(result.error_code, ErrorCode.INVALID_INPUT.value)
        self.rpc.send_raw_transaction.assert_not_called()

    def test_mint_lookup_outage_fails_without_sending(self):
        self.rpc.get_mint_info.side_effect = RpcError("node unavailable")

        result = self.engine.submit(TransferIntent(PAYER, DEST, 10, mint="Mint111"), self.signer, self.options)

        self.assertTrue(result.is_failed)
        self.rpc.send_raw_transaction.assert_not_called()


class TestConfirmationPaths(SubmissionTestCase):

    def test_subscriber_preferred(self):
        subscriber = MagicMock()
        subscriber.wait_for_signature.return_value = SignatureStatus("sig1", "confirmed")
        engine = SubmissionEngine(
            self.rpc, self.oracle, subscriber=subscriber, tx_builder=self.builder, fetch_actual_fee=False
        )

        result = engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        subscriber.wait_for_signature.assert_called_once_with("sig1", "confirmed", 1.0)
        self.rpc.confirm_transaction.assert_not_called()

    def test_subscriber_failure_falls_back_to_polling(self):
        subscriber = MagicMock()
        subscriber.wait_for_signature.side_effect = RpcError("socket closed")
        engine = SubmissionEngine(
            self.rpc, self.oracle, subscriber=subscriber, tx_builder=self.builder, fetch_actual_fee=False
        )

        result = engine.submit(self.intent, self.signer, self.options)

        self.assertTrue(result.is_confirmed)
        self.rpc.confirm_transaction.assert_called_once()

    def test_dry_run_does_not_send(self):
        options = SubmitOptions(dry_run=True, max_retries=0, confirmation_timeout=1.0)

        result = self.engine.submit(self.intent, self.signer, options)

        self.assertTrue(result.is_skipped)
        self.assertEqual(result.signature, DRY_RUN_SIGNATURE)
        self.signer.sign_transaction.assert_called_once()
        self.rpc.send_raw_transaction.assert_not_called()


class TestSubmitOptions(unittest.TestCase):

    def test_negative_retries_rejected(self):
        from solana_volume.errors import ValidationError
        with self.assertRaises(ValidationError):
            SubmitOptions(max_retries=-1)

    def test_defaults_filled(self):
        options = SubmitOptions()
        self.assertIsNotNone(options.max_retries)
        self.assertIsNotNone(options.commitment)
        self.assertIsNone(options.priority_fee)


if __name__ == "__main__":
    unittest.main()
