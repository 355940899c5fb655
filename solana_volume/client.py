"""
VolumeClient - Unified entry point for volume runs

Wires the RPC client, fee oracle, submission engine, funder and
orchestrator together from the global configuration.
"""

from __future__ import annotations

from typing import List, Optional, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from solders.keypair import Keypair

from .config import config as global_config
from .infra import (
    EventBus,
    RpcClient,
    RpcClientConfig,
    SignatureSubscriber,
    Signer,
    create_signer,
    ws_url_from_http,
)
from .types import RunSummary

if TYPE_CHECKING:
    from .modules.fee_collector import FeeCollector
    from .modules.fee_oracle import FeeOracle
    from .modules.funder import BatchFunder
    from .modules.orchestrator import ReconciliationStrategy, RunParams, WalletStore, WorkflowOrchestrator
    from .modules.partitioner import AmountPartitioner
    from .modules.submission import SubmissionEngine


class VolumeClient:
    """
    Volume engine client

    Provides access to:
    - oracle: Priority fee levels
    - engine: Transaction submission
    - funder: Batch funding
    - fee_collector: Service fee injection
    - orchestrator: Complete staged runs

    Usage:
        from solders.keypair import Keypair

        client = VolumeClient(
            rpc_url="https://api.devnet.solana.com",
            keypair_path="/path/to/keypair.json",
        )
        summary = client.run(RunParams(child_count=5, funding_amount=50_000_000,
                                       total_volume=100_000_000))
        print(summary.to_dict())
    """

    def __init__(
        self,
        rpc_url: Optional[Union[str, List[str]]] = None,
        keypair: Optional["Keypair"] = None,
        keypair_path: Optional[str] = None,
        rpc_config: Optional[RpcClientConfig] = None,
        ws_url: Optional[str] = None,
        network: Optional[str] = None,
        strategy: Optional["ReconciliationStrategy"] = None,
        events: Optional[EventBus] = None,
        wallet_store: Optional["WalletStore"] = None,
    ):
        """
        Args:
            rpc_url: RPC endpoint URL or list of URLs for fallback (config default if None)
            keypair: Origin wallet keypair
            keypair_path: Origin wallet keypair file
            rpc_config: Optional RPC configuration
            ws_url: Websocket endpoint for confirmations (derived from rpc_url if None)
            network: Network name reported in run summaries
            strategy: Reconciliation strategy (chosen from network if None)
            events: Event bus shared by every module
            wallet_store: Origin lookup and child wallet creation
                (in-memory keypairs around the origin signer if None)
        """
        self._rpc = RpcClient(rpc_url or global_config.rpc.url, config=rpc_config)
        self._keypair = keypair
        self._keypair_path = keypair_path
        self._network = network or global_config.rpc.network
        self._ws_url = ws_url
        self._strategy = strategy
        self._events = events or EventBus()
        self._wallet_store = wallet_store

        self._signer: Optional[Signer] = None
        self._oracle: Optional["FeeOracle"] = None
        self._engine: Optional["SubmissionEngine"] = None
        self._funder: Optional["BatchFunder"] = None
        self._fee_collector: Optional["FeeCollector"] = None
        self._orchestrator: Optional["WorkflowOrchestrator"] = None

    @property
    def rpc(self) -> RpcClient:
        return self._rpc

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def network(self) -> str:
        return self._network

    @property
    def signer(self) -> Signer:
        """Origin wallet signer, resolved on first use"""
        if self._signer is None:
            self._signer = create_signer(keypair=self._keypair, keypair_path=self._keypair_path)
        return self._signer

    @property
    def oracle(self) -> "FeeOracle":
        if self._oracle is None:
            from .modules.fee_oracle import FeeOracle
            self._oracle = FeeOracle(self._rpc)
        return self._oracle

    def _subscriber(self) -> Optional[SignatureSubscriber]:
        if not global_config.tx.use_subscription:
            return None
        ws_url = self._ws_url or global_config.rpc.ws_url or ws_url_from_http(self._rpc.endpoint)
        return SignatureSubscriber(ws_url)

    @property
    def engine(self) -> "SubmissionEngine":
        if self._engine is None:
            from .modules.submission import SubmissionEngine
            self._engine = SubmissionEngine(
                self._rpc,
                self.oracle,
                events=self._events,
                subscriber=self._subscriber(),
            )
        return self._engine

    @property
    def funder(self) -> "BatchFunder":
        if self._funder is None:
            from .modules.funder import BatchFunder
            self._funder = BatchFunder(self.engine, self._rpc, events=self._events)
        return self._funder

    @property
    def fee_collector(self) -> Optional["FeeCollector"]:
        """Service fee collector, None when no fee wallet is configured"""
        fee = global_config.fee
        if self._fee_collector is None and fee.service_fee_wallet:
            from .modules.fee_collector import FeeCollector
            self._fee_collector = FeeCollector(
                fee.service_fee_numerator,
                fee.service_fee_denominator,
                fee.service_fee_wallet,
            )
        return self._fee_collector

    @property
    def wallet_store(self) -> "WalletStore":
        """
        Wallet store holding the child wallets of every run

        Child keypairs created by the default store live only in memory;
        export them from `wallet_store.children` before the process exits
        when funds are left in the children.
        """
        if self._wallet_store is None:
            from .modules.orchestrator import KeypairWalletStore
            self._wallet_store = KeypairWalletStore(self.signer)
        return self._wallet_store

    @property
    def orchestrator(self) -> "WorkflowOrchestrator":
        if self._orchestrator is None:
            from .modules.orchestrator import WorkflowOrchestrator, strategy_for_network
            self._orchestrator = WorkflowOrchestrator(
                self.engine,
                self.funder,
                self._rpc,
                wallet_store=self.wallet_store,
                strategy=self._strategy or strategy_for_network(self._network),
                fee_collector=self.fee_collector,
                partitioner=self._partitioner(),
                events=self._events,
                network=self._network,
            )
        return self._orchestrator

    def _partitioner(self) -> "AmountPartitioner":
        from .modules.partitioner import AmountPartitioner
        return AmountPartitioner()

    def run(self, params: "RunParams") -> RunSummary:
        """Execute one orchestrated run"""
        return self.orchestrator.run(params)

    def close(self):
        """Close client connections and release resources"""
        self._rpc.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"VolumeClient(network={self._network}, endpoint={self._rpc.endpoint})"
