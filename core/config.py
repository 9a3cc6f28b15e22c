from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    """
    Centralized application settings. Pydantic's BaseSettings will automatically
    load these from environment variables or a .env file.
    """
    # --- Graph Store ---
    GRAPH_STORE: str = Field("memory", description="Which graph store backs the investigation graph: 'memory' or 'neo4j'.")
    NEO4J_URI: str = Field("", description="Bolt URI of the Neo4j instance.")
    NEO4J_USERNAME: str = Field("", description="Neo4j username.")
    NEO4J_PASSWORD: str = Field("", description="Neo4j password.")

    # --- Provider Credentials ---
    SHODAN_API_KEY: Optional[str] = Field(None, description="Shodan API key.")
    HIBP_API_KEY: Optional[str] = Field(None, description="HaveIBeenPwned v3 API key.")
    OATHNET_API_KEY: Optional[str] = Field(None, description="OathNet API key.")

    # --- Timeouts ---
    HTTP_TIMEOUT_SECONDS: float = Field(10.0, description="Timeout applied to every outbound API call.")
    DNS_TIMEOUT_SECONDS: float = Field(5.0, description="Timeout for a single DNS resolution.")
    NMAP_QUICK_TIMEOUT_SECONDS: float = Field(60.0, description="Timeout for an nmap quick scan.")
    NMAP_FULL_TIMEOUT_SECONDS: float = Field(600.0, description="Timeout for an nmap full scan.")
    EXECUTE_RESPONSE_TIMEOUT_SECONDS: float = Field(30.0, description="How long the execute endpoint waits before answering 504.")

    # --- Fan-out Politeness ---
    PROBE_BATCH_SIZE: int = Field(4, description="Concurrent profile probes per batch in username search.")
    PROBE_BATCH_DELAY_SECONDS: float = Field(0.5, description="Pause between sub-probe batches.")

    # --- System Parameters ---
    LOG_LEVEL: str = Field("INFO", description="Root level for the JSON loggers.")
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost", "http://localhost:3000"],
        description="Origins allowed to call the API."
    )
    NOTIFY_WEBHOOK_URL: Optional[str] = Field(None, description="Optional webhook notified on service start/stop.")
    USER_AGENT: str = Field("NodeWeaver-OSINT", description="User-Agent sent to external providers.")

    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    def credential_for(self, provider: str) -> Optional[str]:
        """Returns the configured credential for a provider key, if any."""
        return {
            "shodan": self.SHODAN_API_KEY,
            "hibp": self.HIBP_API_KEY,
            "oathnet": self.OATHNET_API_KEY,
        }.get(provider)

settings = Settings()
