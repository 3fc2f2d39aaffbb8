from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application configuration settings."""

    # Database
    database_url: str = "sqlite:///./resolver.db"
    database_echo: bool = False

    # Chain
    rpc_url: str = "https://data-seed-prebsc-1-s1.bnbchain.org:8545"
    chain_id: int = 97  # BSC testnet
    tx_receipt_timeout: int = 120  # seconds to wait for mining

    # Signers (service-specific key first, shared key as fallback)
    private_key: Optional[str] = None
    dispute_bot_private_key: Optional[str] = None
    oracle_private_key: Optional[str] = None
    oracle_address: Optional[str] = None  # dispute bot wallet, when its key is not configured

    # Contracts
    dispute_address: Optional[str] = "0x52EbCBf8c967Fcb4b83644626822881ADaA9bffF"
    subjective_factory_address: Optional[str] = "0x6E83054913aA6C616257Dae2e87BC44F9260EDc6"
    market_aggregator_address: str = "0x0000000000000000000000000000000000000000"

    # Dispute bot
    dispute_stake_eth: str = "0.1"
    dispute_max_concurrent: int = 5
    dispute_poll_interval: int = 60  # seconds
    dispute_confidence_threshold: int = 50  # submit only below this AI confidence
    dispute_submit_delay: float = 2.0  # seconds between submissions
    dispute_claim_batch_size: int = 20
    dispute_lease_seconds: int = 600  # claim-before-act lease
    dispute_start_block: Optional[int] = None
    event_scan_chunk_size: int = 5000

    # AI oracle / anomaly scorer
    ai_check_interval: int = 60  # seconds
    oracle_lookback_hours: int = 24
    oracle_batch_size: int = 20
    oracle_evidence_delay: float = 0.5  # seconds between evidence calls
    anomaly_dispute_threshold: int = 40  # dispute when score is strictly above
    anomaly_low_confidence: int = 50
    anomaly_fast_resolution_penalty: int = 20
    anomaly_fast_resolution_seconds: int = 3600
    anomaly_low_volume_penalty: int = 15
    anomaly_low_volume: float = 0.01
    anomaly_incorrect_verdict_penalty: int = 30
    evidence_sources: str = "heuristic,newsapi"
    reasoning_provider: str = "heuristic"  # heuristic, llm
    newsapi_key: Optional[str] = None
    newsapi_url: str = "https://newsapi.org/v2/everything"
    http_timeout: float = 15.0

    # Subjective oracle
    subjective_oracle_interval: int = 60  # seconds
    commit_duration_hours: float = 24
    reveal_duration_hours: float = 24
    subjective_batch_size: int = 5
    verifier_webhook_url: Optional[str] = None

    # Market syncer
    market_sync_interval: int = 300  # seconds
    market_sync_limit: int = 100
    gamma_api_url: str = "https://gamma-api.polymarket.com"

    # LLM Services
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    llm_provider: str = "openai"  # openai, anthropic
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.1  # Low temperature for consistent results
    llm_max_tokens: int = 1000

    # API
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Prediction Market Resolution Services"

    # Development
    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False

    def signer_key(self, service: str) -> Optional[str]:
        """Private key for a service, falling back to the shared key."""
        specific = {
            "dispute_bot": self.dispute_bot_private_key,
            "oracle": self.oracle_private_key,
        }.get(service)
        return specific or self.private_key


settings = Settings()
