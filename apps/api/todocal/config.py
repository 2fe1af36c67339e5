from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_SECRETS = {"dev-secret-change-me", "replace_with_strong_random_secret"}


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://todo:todo@db:5432/todo"
  jwt_secret: str = "dev-secret-change-me"
  jwt_ttl_days: int = 7

  title_cipher: str = "kms"  # kms | fernet
  kms_endpoint: str = "https://kms.apigw.ntruss.com"
  kms_key_tag: str | None = None
  kms_timeout_seconds: float = 5.0
  fernet_key: str | None = None

  ncp_access_key: str | None = None
  ncp_secret_key: str | None = None

  storage_endpoint: str = "https://kr.object.ncloudstorage.com"
  storage_region: str = "kr-standard"
  storage_bucket: str | None = None
  storage_public_base_url: str | None = None
  upload_url_ttl_seconds: int = 300
  max_upload_bytes: int = 10 * 1024 * 1024

  smtp_host: str = "smtp.gmail.com"
  smtp_port: int = 587
  smtp_user: str | None = None
  smtp_password: str | None = None
  smtp_starttls: bool = True
  smtp_timeout_seconds: float = 10.0
  mail_from: str | None = None

  app_timezone: str = "Asia/Seoul"
  reminder_interval_seconds: int = 60
  reminder_catch_up_minutes: int = 0
  reminder_max_offset_minutes: int = 7 * 24 * 60

  rate_limit_auth_ip_per_minute: int = 60
  rate_limit_auth_email_per_minute: int = 20

  # owner for todos created before accounts existed (migration 0002)
  legacy_owner_email: str | None = None
  legacy_owner_password: str | None = None

  cors_origins: str = "*"
  log_level: str = "INFO"
  port: int = 3000

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def mail_enabled(self) -> bool:
    return bool(self.smtp_user and self.smtp_password)

  def is_test_db(self) -> bool:
    db_name = self.database_url.rsplit("/", 1)[-1]
    return "test" in db_name

  def missing_required(self) -> list[str]:
    missing: list[str] = []
    if not self.jwt_secret or self.jwt_secret.strip().lower() in PLACEHOLDER_SECRETS:
      missing.append("JWT_SECRET")
    if self.title_cipher == "kms":
      if not self.kms_key_tag:
        missing.append("KMS_KEY_TAG")
    elif self.title_cipher == "fernet":
      if not self.fernet_key:
        missing.append("FERNET_KEY")
    else:
      missing.append("TITLE_CIPHER")
    if not self.ncp_access_key:
      missing.append("NCP_ACCESS_KEY")
    if not self.ncp_secret_key:
      missing.append("NCP_SECRET_KEY")
    if not self.storage_bucket:
      missing.append("STORAGE_BUCKET")
    return missing


settings = Settings()
