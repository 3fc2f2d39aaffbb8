"""
On-chain access for the dispute and subjective-market contracts.

Thin wrappers over web3 contract objects: they sign and send transactions with
the service's local key, wait for mining, and turn event logs into plain
dataclasses the services can reason about without touching web3 types.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD
from web3.providers import HTTPProvider

from resolver.exceptions import AlreadyClaimedError, ChainError, ConfigurationError, is_already_claimed


def _uint(name: str, indexed: bool = False) -> Dict[str, Any]:
    return {"indexed": indexed, "internalType": "uint256", "name": name, "type": "uint256"}


def _address(name: str, indexed: bool = False) -> Dict[str, Any]:
    return {"indexed": indexed, "internalType": "address", "name": name, "type": "address"}


DISPUTE_ABI = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "marketId", "type": "uint256"},
            {"internalType": "bytes32", "name": "evidenceHash", "type": "bytes32"},
            {"internalType": "uint256", "name": "proposedOutcome", "type": "uint256"}
        ],
        "name": "submitDispute",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "disputeId", "type": "uint256"}],
        "name": "claimReward",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "disputeId", "type": "uint256"}],
        "name": "getDispute",
        "outputs": [
            {
                "components": [
                    {"internalType": "uint256", "name": "id", "type": "uint256"},
                    {"internalType": "uint256", "name": "marketId", "type": "uint256"},
                    {"internalType": "address", "name": "submitter", "type": "address"},
                    {"internalType": "bytes32", "name": "evidenceHash", "type": "bytes32"},
                    {"internalType": "uint256", "name": "stake", "type": "uint256"},
                    {"internalType": "uint256", "name": "submittedAt", "type": "uint256"},
                    {"internalType": "uint8", "name": "status", "type": "uint8"},
                    {"internalType": "uint256", "name": "votesFor", "type": "uint256"},
                    {"internalType": "uint256", "name": "votesAgainst", "type": "uint256"},
                    {"internalType": "uint256", "name": "proposedOutcome", "type": "uint256"},
                    {"internalType": "uint256", "name": "aiConfidence", "type": "uint256"}
                ],
                "internalType": "struct AIOracleDispute.Dispute",
                "name": "",
                "type": "tuple"
            }
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "anonymous": False,
        "inputs": [
            _uint("disputeId", indexed=True),
            _uint("marketId", indexed=True),
            _address("submitter", indexed=True),
            {"indexed": False, "internalType": "bytes32", "name": "evidenceHash", "type": "bytes32"},
            _uint("proposedOutcome")
        ],
        "name": "DisputeSubmitted",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            _uint("disputeId", indexed=True),
            {"indexed": False, "internalType": "bool", "name": "accepted", "type": "bool"},
            _uint("outcome")
        ],
        "name": "DisputeResolved",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            _uint("disputeId", indexed=True),
            _address("claimer", indexed=True),
            _uint("amount")
        ],
        "name": "RewardClaimed",
        "type": "event"
    }
]

_MARKET_ID_INPUT = [{"internalType": "uint256", "name": "marketId", "type": "uint256"}]

SUBJECTIVE_FACTORY_ABI = [
    {
        "inputs": _MARKET_ID_INPUT,
        "name": "getMarket",
        "outputs": [
            {"internalType": "uint256", "name": "id", "type": "uint256"},
            {"internalType": "string", "name": "question", "type": "string"},
            {"internalType": "address", "name": "creator", "type": "address"},
            {"internalType": "address[]", "name": "verifiers", "type": "address[]"},
            {"internalType": "uint256", "name": "threshold", "type": "uint256"},
            {"internalType": "uint256", "name": "resolutionTime", "type": "uint256"},
            {"internalType": "uint8", "name": "phase", "type": "uint8"},
            {"internalType": "uint256", "name": "outcome", "type": "uint256"},
            {"internalType": "uint256", "name": "revealCount", "type": "uint256"},
            {"internalType": "uint256", "name": "createdAt", "type": "uint256"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {"inputs": _MARKET_ID_INPUT, "name": "startCommitPhase", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": _MARKET_ID_INPUT, "name": "startRevealPhase", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {"inputs": _MARKET_ID_INPUT, "name": "forceResolveMarket", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
    {
        "anonymous": False,
        "inputs": [_uint("marketId", indexed=True), _address("verifier", indexed=True)],
        "name": "CommitmentSubmitted",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [_uint("marketId", indexed=True), _address("verifier", indexed=True), _uint("outcome")],
        "name": "OutcomeRevealed",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [_uint("marketId", indexed=True), _uint("outcome")],
        "name": "MarketResolved",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            _uint("marketId", indexed=True),
            {"indexed": False, "internalType": "uint8", "name": "newPhase", "type": "uint8"}
        ],
        "name": "PhaseChanged",
        "type": "event"
    }
]


class OnChainDisputeStatus(enum.IntEnum):
    ACTIVE = 0
    RESOLVED = 1
    REJECTED = 2
    EXPIRED = 3


@dataclass
class DisputeSubmittedEvent:
    dispute_id: int
    market_id: int
    submitter: str
    evidence_hash: str
    proposed_outcome: int
    block_number: int
    tx_hash: str


@dataclass
class DisputeResolvedEvent:
    dispute_id: int
    accepted: bool
    outcome: int
    block_number: int


@dataclass
class VerifierEvent:
    """A CommitmentSubmitted or OutcomeRevealed log for one verifier."""

    market_id: int
    verifier: str
    block_number: int
    outcome: Optional[int] = None


@dataclass
class SubjectiveMarketState:
    market_id: int
    question: str
    verifiers: List[str]
    phase: int
    outcome: int
    reveal_count: int


class ChainClient:
    """Web3 connection plus the local signing account of one service."""

    def __init__(self, rpc_url: str, private_key: Optional[str] = None,
                 chain_id: Optional[int] = None, receipt_timeout: int = 120):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.w3 = Web3(HTTPProvider(rpc_url))
        self.account = Account.from_key(private_key) if private_key else None
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout

    @property
    def address(self) -> str:
        if not self.account:
            raise ConfigurationError("No signer configured")
        return self.account.address

    def block_number(self) -> int:
        return self.w3.eth.block_number

    def contract(self, address: str, abi: List[Dict[str, Any]]):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def send_transaction(self, fn, value: int = 0):
        """Sign, send and wait for a contract call to be mined. Raises ChainError on revert."""
        try:
            tx = fn.build_transaction({
                "from": self.address,
                "value": value,
                "nonce": self.w3.eth.get_transaction_count(self.address, "pending"),
                "chainId": self.chain_id or self.w3.eth.chain_id
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            self.logger.info(f"Transaction sent: {Web3.to_hex(tx_hash)}")
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except ContractLogicError as e:
            if is_already_claimed(e):
                raise AlreadyClaimedError(str(e)) from e
            raise ChainError(f"Contract call reverted: {e}") from e
        except TimeExhausted as e:
            raise ChainError(f"Transaction not mined within {self.receipt_timeout}s") from e

        if receipt["status"] != 1:
            raise ChainError(f"Transaction {Web3.to_hex(tx_hash)} reverted in block {receipt['blockNumber']}")

        self.logger.info(f"Transaction confirmed in block {receipt['blockNumber']}")
        return receipt


class DisputeContract:
    """The AIOracleDispute contract as seen by the dispute bot."""

    def __init__(self, client: ChainClient, address: str, chunk_size: int = 5000):
        self.client = client
        self.address = address
        self.chunk_size = chunk_size
        self.contract = client.contract(address, DISPUTE_ABI)

    def block_number(self) -> int:
        return self.client.block_number()

    def _get_logs(self, event, from_block: int, to_block: int) -> List[Any]:
        logs = []
        start = from_block
        while start <= to_block:
            end = min(start + self.chunk_size - 1, to_block)
            logs.extend(event.get_logs(from_block=start, to_block=end))
            start = end + 1
        return logs

    @staticmethod
    def _submitted(event) -> DisputeSubmittedEvent:
        args = event["args"]
        return DisputeSubmittedEvent(
            dispute_id=int(args["disputeId"]),
            market_id=int(args["marketId"]),
            submitter=args["submitter"].lower(),
            evidence_hash=Web3.to_hex(args["evidenceHash"]),
            proposed_outcome=int(args["proposedOutcome"]),
            block_number=event["blockNumber"],
            tx_hash=Web3.to_hex(event["transactionHash"])
        )

    def submitted_events(self, from_block: int, to_block: int) -> List[DisputeSubmittedEvent]:
        logs = self._get_logs(self.contract.events.DisputeSubmitted, from_block, to_block)
        return [self._submitted(event) for event in logs]

    def resolved_events(self, from_block: int, to_block: int) -> List[DisputeResolvedEvent]:
        logs = self._get_logs(self.contract.events.DisputeResolved, from_block, to_block)
        return [
            DisputeResolvedEvent(
                dispute_id=int(event["args"]["disputeId"]),
                accepted=bool(event["args"]["accepted"]),
                outcome=int(event["args"]["outcome"]),
                block_number=event["blockNumber"]
            )
            for event in logs
        ]

    def submit_dispute(self, market_id: int, evidence_hash: str, proposed_outcome: int, stake_wei: int):
        fn = self.contract.functions.submitDispute(
            market_id, Web3.to_bytes(hexstr=evidence_hash), proposed_outcome
        )
        return self.client.send_transaction(fn, value=stake_wei)

    def submitted_events_from_receipt(self, receipt) -> List[DisputeSubmittedEvent]:
        logs = self.contract.events.DisputeSubmitted().process_receipt(receipt, errors=DISCARD)
        return [self._submitted(event) for event in logs]

    def get_dispute_status(self, dispute_id: int) -> OnChainDisputeStatus:
        try:
            dispute = self.contract.functions.getDispute(dispute_id).call()
        except ContractLogicError as e:
            raise ChainError(f"getDispute({dispute_id}) failed: {e}") from e
        return OnChainDisputeStatus(int(dispute[6]))

    def claim_reward(self, dispute_id: int):
        return self.client.send_transaction(self.contract.functions.claimReward(dispute_id))


class SubjectiveFactoryContract:
    """The subjective market factory: phase calls, market state and verifier events."""

    def __init__(self, client: ChainClient, address: str):
        self.client = client
        self.address = address
        self.contract = client.contract(address, SUBJECTIVE_FACTORY_ABI)

    def get_market(self, market_id: int) -> SubjectiveMarketState:
        try:
            data = self.contract.functions.getMarket(market_id).call()
        except ContractLogicError as e:
            raise ChainError(f"getMarket({market_id}) failed: {e}") from e
        return SubjectiveMarketState(
            market_id=int(data[0]),
            question=data[1],
            verifiers=list(data[3]),
            phase=int(data[6]),
            outcome=int(data[7]),
            reveal_count=int(data[8])
        )

    def start_commit_phase(self, market_id: int):
        return self.client.send_transaction(self.contract.functions.startCommitPhase(market_id))

    def start_reveal_phase(self, market_id: int):
        return self.client.send_transaction(self.contract.functions.startRevealPhase(market_id))

    def force_resolve_market(self, market_id: int):
        return self.client.send_transaction(self.contract.functions.forceResolveMarket(market_id))

    def commitment_events(self, market_id: int, from_block: int = 0) -> List[VerifierEvent]:
        logs = self.contract.events.CommitmentSubmitted.get_logs(
            argument_filters={"marketId": market_id},
            from_block=from_block,
            to_block="latest"
        )
        return [
            VerifierEvent(market_id=market_id, verifier=event["args"]["verifier"], block_number=event["blockNumber"])
            for event in logs
        ]

    def reveal_events(self, market_id: int, from_block: int = 0) -> List[VerifierEvent]:
        logs = self.contract.events.OutcomeRevealed.get_logs(
            argument_filters={"marketId": market_id},
            from_block=from_block,
            to_block="latest"
        )
        return [
            VerifierEvent(
                market_id=market_id,
                verifier=event["args"]["verifier"],
                block_number=event["blockNumber"],
                outcome=int(event["args"]["outcome"])
            )
            for event in logs
        ]
