"""Wallet and blockchain gateway.

The API never holds wallet or contract state globally; routes receive a
``WalletGateway`` through ``get_wallet_gateway`` and tests override it.
"""

import abc
import datetime
import random
import uuid
from decimal import Decimal
from functools import lru_cache
from typing import List, NamedTuple, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError

from carbonsync import config
from carbonsync.logger import get_logger

logger = get_logger(__name__)

CARBON_CREDIT_ABI = [
    {
        "name": "mint",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "projectId", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "getProjectCredits",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "projectId", "type": "string"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

PROJECT_REGISTRY_ABI = [
    {
        "name": "registerProject",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "projectId", "type": "string"},
            {"name": "ngoAddress", "type": "address"},
            {"name": "ipfsHash", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "name": "verifyProject",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "projectId", "type": "string"},
            {"name": "verifier", "type": "address"},
        ],
        "outputs": [],
    },
    {
        "name": "getProject",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "projectId", "type": "string"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "projectId", "type": "string"},
                    {"name": "ngoAddress", "type": "address"},
                    {"name": "verifier", "type": "address"},
                    {"name": "ipfsHash", "type": "string"},
                    {"name": "verified", "type": "bool"},
                ],
            }
        ],
    },
]

TOKEN_SYMBOL = "CCT"
TOKEN_NAME = "Carbon Credit Token"
ZERO_ADDRESS = "0x" + "0" * 40


class GatewayError(Exception):
    pass


class TransactionReceipt(NamedTuple):
    transaction_hash: str
    block_number: Optional[int]
    success: bool


class ProjectRecord(NamedTuple):
    project_id: str
    ngo_address: str
    verifier: str
    ipfs_hash: str
    verified: bool


class TokenBalance(NamedTuple):
    symbol: str
    name: str
    balance: float
    decimals: int
    contract_address: str
    price_usd: float
    value: float


class WalletGateway(abc.ABC):
    """What the API needs from a wallet / contract backend."""

    @abc.abstractmethod
    def connect(self) -> str:
        """Return the address transactions are sent from."""

    @abc.abstractmethod
    def get_balance(self, address: str) -> float:
        """Carbon credit token balance of ``address``, in whole tokens."""

    @abc.abstractmethod
    def transfer(self, to: str, amount: float) -> TransactionReceipt:
        pass

    @abc.abstractmethod
    def register_project(self, project_id: str, ngo_address: str, ipfs_hash: str) -> str:
        pass

    @abc.abstractmethod
    def mint_credits(self, project_id: str, ngo_address: str, amount: float) -> str:
        pass

    @abc.abstractmethod
    def verify_project(self, project_id: str, verifier: str) -> str:
        """Record a registry verification; returns the transaction hash."""

    @abc.abstractmethod
    def get_project_record(self, project_id: str) -> Optional[ProjectRecord]:
        """Registry entry for ``project_id``, or None if it was never registered."""

    @abc.abstractmethod
    def get_project_credits(self, project_id: str) -> float:
        pass

    def get_token_balances(self, address: str) -> List[TokenBalance]:
        balance = self.get_balance(address)
        price = config.DEFAULT_PRICE_PER_CREDIT
        return [
            TokenBalance(
                symbol=TOKEN_SYMBOL,
                name=TOKEN_NAME,
                balance=balance,
                decimals=config.TOKEN_DECIMALS,
                contract_address=config.CARBON_CREDIT_TOKEN,
                price_usd=price,
                value=balance * price,
            )
        ]


class MockWalletGateway(WalletGateway):
    """Placeholder backend: fixed address and balance, random transaction hashes.

    Registrations, verifications and mints are kept in memory so that reads
    reflect earlier writes made through the same instance.
    """

    address = "0x742d35Cc6634C0532925a3b8D4C0532925a3b8D4"
    balance = 1250.0
    price_usd = 25.5

    def __init__(self):
        self._projects = {}
        self._credits = {}

    def connect(self) -> str:
        return self.address

    def get_balance(self, address: str) -> float:
        return self.balance

    def get_token_balances(self, address: str) -> List[TokenBalance]:
        return [
            TokenBalance(
                symbol=TOKEN_SYMBOL,
                name=TOKEN_NAME,
                balance=self.balance,
                decimals=config.TOKEN_DECIMALS,
                contract_address=config.CARBON_CREDIT_TOKEN,
                price_usd=self.price_usd,
                value=self.balance * self.price_usd,
            )
        ]

    def transfer(self, to: str, amount: float) -> TransactionReceipt:
        logger.info("Mock transfer", to=to, amount=amount)
        return TransactionReceipt(transaction_hash=mock_transaction_hash(), block_number=None, success=True)

    def register_project(self, project_id: str, ngo_address: str, ipfs_hash: str) -> str:
        tx_hash = mock_transaction_hash()
        self._projects[project_id] = ProjectRecord(project_id, ngo_address, ZERO_ADDRESS, ipfs_hash, False)
        logger.info("Mock project registration", project_id=project_id, tx_hash=tx_hash)
        return tx_hash

    def mint_credits(self, project_id: str, ngo_address: str, amount: float) -> str:
        tx_hash = mock_transaction_hash()
        self._credits[project_id] = self._credits.get(project_id, 0.0) + amount
        logger.info("Mock credit mint", project_id=project_id, amount=amount, tx_hash=tx_hash)
        return tx_hash

    def verify_project(self, project_id: str, verifier: str) -> str:
        record = self._projects.get(project_id)
        if record is None:
            raise GatewayError(f"Project {project_id} is not registered")
        self._projects[project_id] = record._replace(verifier=verifier, verified=True)
        tx_hash = mock_transaction_hash()
        logger.info("Mock project verification", project_id=project_id, verifier=verifier, tx_hash=tx_hash)
        return tx_hash

    def get_project_record(self, project_id: str) -> Optional[ProjectRecord]:
        return self._projects.get(project_id)

    def get_project_credits(self, project_id: str) -> float:
        return self._credits.get(project_id, 0.0)


class Web3WalletGateway(WalletGateway):
    """Contract calls over JSON-RPC, signed with the configured private key."""

    def __init__(self, rpc_url: str = config.RPC_URL, private_key: Optional[str] = config.SIGNER_PRIVATE_KEY,
                 chain_id: int = config.CHAIN_ID):
        self.web3 = Web3(Web3.HTTPProvider(rpc_url))
        self.chain_id = chain_id
        self._private_key = private_key
        self._account = self.web3.eth.account.from_key(private_key) if private_key else None
        self.token = self.web3.eth.contract(
            address=Web3.to_checksum_address(config.CARBON_CREDIT_TOKEN), abi=CARBON_CREDIT_ABI
        )
        self.registry = self.web3.eth.contract(
            address=Web3.to_checksum_address(config.PROJECT_REGISTRY), abi=PROJECT_REGISTRY_ABI
        )

    def connect(self) -> str:
        if self._account is None:
            raise GatewayError("No signer key configured")
        return self._account.address

    def get_balance(self, address: str) -> float:
        raw = self.token.functions.balanceOf(Web3.to_checksum_address(address)).call()
        return float(Web3.from_wei(raw, "ether"))

    def transfer(self, to: str, amount: float) -> TransactionReceipt:
        fn = self.token.functions.transfer(Web3.to_checksum_address(to), _to_token_units(amount))
        return self._send(fn)

    def register_project(self, project_id: str, ngo_address: str, ipfs_hash: str) -> str:
        fn = self.registry.functions.registerProject(project_id, Web3.to_checksum_address(ngo_address), ipfs_hash)
        return self._send(fn).transaction_hash

    def mint_credits(self, project_id: str, ngo_address: str, amount: float) -> str:
        fn = self.token.functions.mint(Web3.to_checksum_address(ngo_address), _to_token_units(amount), project_id)
        return self._send(fn).transaction_hash

    def verify_project(self, project_id: str, verifier: str) -> str:
        fn = self.registry.functions.verifyProject(project_id, Web3.to_checksum_address(verifier))
        return self._send(fn).transaction_hash

    def get_project_record(self, project_id: str) -> Optional[ProjectRecord]:
        try:
            result = self.registry.functions.getProject(project_id).call()
        except ContractLogicError:
            return None
        # Unknown ids come back as an empty struct.
        if not result or not result[0]:
            return None
        return ProjectRecord(*result)

    def get_project_credits(self, project_id: str) -> float:
        raw = self.token.functions.getProjectCredits(project_id).call()
        return float(Web3.from_wei(raw, "ether"))

    def _send(self, fn) -> TransactionReceipt:
        sender = self.connect()
        tx = fn.build_transaction({
            "from": sender,
            "nonce": self.web3.eth.get_transaction_count(sender, "pending"),
            "chainId": self.chain_id,
        })
        signed = self.web3.eth.account.sign_transaction(tx, self._private_key)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash)
        result = TransactionReceipt(
            transaction_hash=Web3.to_hex(tx_hash),
            block_number=receipt["blockNumber"],
            success=receipt["status"] == 1,
        )
        logger.info("Transaction mined", tx_hash=result.transaction_hash, block=result.block_number,
                    success=result.success)
        if not result.success:
            raise GatewayError(f"Transaction {result.transaction_hash} reverted")
        return result


@lru_cache
def get_wallet_gateway() -> WalletGateway:
    if config.CHAIN_MODE == "web3":
        return Web3WalletGateway()
    return MockWalletGateway()


def _to_token_units(amount: float) -> int:
    return Web3.to_wei(Decimal(str(amount)), "ether")


# --- Helpers ---

def mock_transaction_hash() -> str:
    return f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}"


def generate_project_id() -> str:
    year = datetime.datetime.now(datetime.timezone.utc).year
    return f"PROJ-{year}-{random.randint(0, 999):03d}"


def generate_token_id(project_id: str) -> str:
    parts = project_id.split("-")
    number = parts[2] if len(parts) >= 3 else project_id
    return f"CCT-{number}"


def is_wallet_address(address: Optional[str]) -> bool:
    return bool(address) and address.startswith("0x") and len(address) == 42


def format_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


def portfolio_value(balances: List[TokenBalance]) -> float:
    return sum(b.value for b in balances)
