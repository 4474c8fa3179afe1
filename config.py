from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Loan Application Assembly API"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./loan_assembly.db"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Form templates (blank AcroForm PDFs) and local artifact output
    templates_dir: Path = Path("templates")
    generated_dir: Path = Path("generated")

    # Object storage: "local" writes under generated_dir, "s3" uses boto3
    storage_backend: str = "local"
    s3_bucket: Optional[str] = None
    aws_region: str = "us-east-2"
    storage_max_retries: int = 3

    # Text completion (Gemini first, Groq fallback, OpenAI last)
    llm_providers: str = "gemini,groq,openai"
    gemini_model: str = "gemini-1.5-flash"
    groq_model: str = "llama-3.1-8b-instant"
    openai_model: str = "gpt-4o-mini"
    gemini_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llm_timeout_seconds: float = 30.0
    llm_max_input_chars: int = 24_000
    ai_mapping_enabled: bool = True
    ai_email_composition: bool = True

    # Delivery
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 30.0
    mail_from: str = "team@salestorvely.com"
    bank_recipients: str = ""

    worker_concurrency: int = 1
    recover_on_startup: bool = True
    default_program_type: str = "sba_7a"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def provider_order(self) -> list[str]:
        return [p.strip().lower() for p in self.llm_providers.split(",") if p.strip()]

    @property
    def default_recipients(self) -> list[str]:
        return [r.strip() for r in self.bank_recipients.split(",") if r.strip()]


settings = Settings()
