import os

# --- Configuration ---
# Every value can be overridden from the environment; the defaults are for local development.
DATABASE_URL = os.getenv("CARBONSYNC_DATABASE_URL", "sqlite:///./carbon_credit_marketplace.db")
SECRET_KEY = os.getenv("CARBONSYNC_SECRET_KEY", "a_very_secret_key_that_should_be_in_env_vars")
ALGORITHM = os.getenv("CARBONSYNC_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("CARBONSYNC_ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Marketplace
DEFAULT_PRICE_PER_CREDIT = float(os.getenv("CARBONSYNC_DEFAULT_PRICE_PER_CREDIT", "25.0"))

# --- Blockchain ---
# "mock" returns placeholder values, "web3" talks to the RPC endpoint below.
CHAIN_MODE = os.getenv("CARBONSYNC_CHAIN_MODE", "mock").lower()
RPC_URL = os.getenv("CARBONSYNC_RPC_URL", "https://rpc-amoy.polygon.technology/")
CHAIN_ID = int(os.getenv("CARBONSYNC_CHAIN_ID", "80002"))  # Polygon Amoy testnet
SIGNER_PRIVATE_KEY = os.getenv("CARBONSYNC_SIGNER_PRIVATE_KEY")
TOKEN_DECIMALS = 18

CARBON_CREDIT_TOKEN = "0xf84473cbC4dB118348d1d07414Cd98987750428e"
PROJECT_REGISTRY = "0x2345678901bcdef1234567890abcdef123456789"

# --- IPFS (Pinata) ---
PINATA_JWT = os.getenv("PINATA_JWT")
PINATA_API_URL = "https://api.pinata.cloud/pinning/pinJSONToIPFS"
IPFS_GATEWAY = "https://gateway.pinata.cloud/ipfs/"
IPFS_TIMEOUT_SECONDS = 30
