"""Configuration management for Steward."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # LLM Configuration
    llm_provider: Literal["ollama", "openai"] = "openai"
    openai_api_key: str = ""
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    openai_model: str = "gpt-4o"
    llm_timeout: float = 30.0

    # Query agent
    agent_use_llm: bool = False  # Route through the tool-calling loop by default
    agent_max_tool_turns: int = 5
    agent_cache_ttl_seconds: float = 3600
    query_max_length: int = 1000
    stream_queue_size: int = 32

    # Response cache
    cache_enabled: bool = True
    cache_sweep_interval_seconds: float = 60.0
    cache_health_min_lookups: int = 10
    cache_degraded_hit_rate: float = 0.3
    cache_unhealthy_hit_rate: float = 0.1
    cache_degraded_size: int = 10_000
    cache_unhealthy_size: int = 50_000

    # Development mode
    dev_mode: bool = True
    log_level: str = "INFO"

    # Data directory
    data_dir: Path = Path.home() / ".steward"

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # LLM_PROVIDER and llm_provider both work
        extra="ignore",  # Ignore extra environment variables
    )

    @property
    def db_path(self) -> Path:
        """Get the SQLite database path."""
        suffix = "dev" if self.dev_mode else "prod"
        return self.data_dir / f"steward_{suffix}.db"

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def log_config(self) -> None:
        """Log current configuration with sensitive values redacted."""
        import os

        print("\n" + "=" * 60)
        print("📋 CONFIGURATION LOADED")
        print("=" * 60)
        print(f"Working Directory:   {os.getcwd()}")
        print(f".env file exists:    {os.path.exists(os.path.join(os.getcwd(), '.env'))}")
        print("-" * 60)

        key = self.openai_api_key
        print(f"LLM Provider:        {self.llm_provider}")
        print(f"OpenAI API Key:      {'✓ Set (' + key[:8] + '...' + key[-4:] + ')' if key else '✗ Not set'}")
        print(f"OpenAI Model:        {self.openai_model}")
        print(f"Ollama Host:         {self.ollama_host}")
        print(f"Ollama Model:        {self.ollama_model}")
        print(f"LLM Routing:         {'tool-calling' if self.agent_use_llm else 'deterministic'}")
        print(f"Max Tool Turns:      {self.agent_max_tool_turns}")
        print(f"Cache Enabled:       {self.cache_enabled}")
        print(f"Cache TTL:           {self.agent_cache_ttl_seconds}s")
        print(f"Dev Mode:            {self.dev_mode}")
        print(f"Database:            {self.db_path}")
        print(f"API Host:            {self.api_host}:{self.api_port}")
        print("=" * 60 + "\n")


# Global settings instance
settings = Settings()
