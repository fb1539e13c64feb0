from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  app_version: str = "1.0.0"
  log_level: str = "INFO"
  log_json: bool = False

  database_url: str = "postgresql+asyncpg://promanage:promanage@db:5432/promanage"
  database_timeout_seconds: int = 15

  # Identity provider (Supabase auth admin API).
  supabase_url: str | None = None
  supabase_service_key: str | None = None
  identity_timeout_seconds: int = 15

  cors_origins: str = "http://localhost:5173,http://localhost:3000"
  client_url: str = "http://localhost:5173"

  mail_provider: str = "smtp"  # smtp | local | disabled
  smtp_host: str = "smtp.sendgrid.net"
  smtp_port: int = 587
  smtp_username: str = "apikey"
  smtp_password: str | None = None
  smtp_from_email: str | None = None
  smtp_from_name: str = "ProManage+ Team"
  smtp_use_tls: bool = True
  smtp_timeout_seconds: int = 15

  ai_provider: str = "groq"  # groq | openai | local | disabled
  ai_api_key: str | None = None
  ai_base_url: str = "https://api.groq.com/openai/v1"
  ai_model: str = "llama-3.3-70b-versatile"
  ai_timeout_seconds: int = 30

  enable_cron_jobs: bool = False
  scheduler_timezone: str = "Asia/Kolkata"
  deadline_reminder_cron: str = "0 9 * * *"
  daily_digest_cron: str = "0 8 * * *"
  overdue_reminder_cron: str = "0 10 * * *"

  redis_url: str | None = None
  rate_limit_ai_per_minute: int = 30
  rate_limit_employee_create_per_minute: int = 10

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def client_link(self, path: str) -> str:
    return f"{self.client_url.rstrip('/')}/{path.lstrip('/')}"


settings = Settings()
