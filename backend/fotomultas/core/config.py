from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "FOTOMULTAS"
    API_PREFIX: str = ""
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Ledger / FineManagement Contract
    LEDGER_RPC_URL: str = "http://127.0.0.1:8545"
    FINE_CONTRACT_ADDRESS: str = ""
    OPERATOR_PRIVATE_KEY: str = ""
    LEDGER_POA_CHAIN: bool = False

    # IPFS Evidence Store
    IPFS_API_URL: str = "http://127.0.0.1:5001"
    IPFS_GATEWAY_URL: Optional[str] = "https://ipfs.io"
    EVIDENCE_RETRIEVAL_TIMEOUT_SECONDS: float = 30.0

    class Config:
        case_sensitive = True
        env_file = ".env"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

settings = Settings()
