from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "Custodia"
    DATABASE_URL: str = "sqlite:///./data/custodia.db"
    STORAGE_DIR: str = "./storage"

    # Browser session (cookie carries a signed JWT with the session id)
    ALGORITHM: str = "HS256"
    SESSION_SECRET: str = ""
    SESSION_COOKIE_NAME: str = "custodia_session"
    SESSION_COOKIE_SECURE: bool = False
    SESSION_TTL_MINUTES: int = 30
    SESSION_BINDING_TTL_SECONDS: int = 900

    # Security
    PASSWORD_PEPPER: str = ""
    SIGNED_LINK_SECRET: str = ""
    SIGNED_LINK_TTL_SECONDS: int = 300
    GRANT_VALIDITY_DAYS: int = 15

    # Second factor
    TOTP_ISSUER: str = "Custodia"
    TOTP_DIGITS: int = 6
    TOTP_PERIOD_SECONDS: int = 30
    TOTP_WINDOW_STEPS: int = 1
    LOGIN_OTP_MAX_ATTEMPTS: int = 5

    # Proof verifier (agent admin API)
    VERIFIER_ADMIN_URL: str = "http://localhost:8021"
    VERIFIER_API_KEY: str = ""
    VERIFIER_CRED_DEF_ID: str = ""
    VERIFIER_HOLDER_CONNECTION_ID: str = "auto"
    VERIFIER_HOLDER_LABEL: str = "holder"
    VERIFIER_TIMEOUT_SECONDS: float = 10.0

    # Ledger CLI
    LEDGER_CLI_COMMAND: str = ""
    LEDGER_NETWORK_NAME: str = "Hyperledger Fabric"
    LEDGER_TIMEOUT_SECONDS: float = 20.0

    # Sensitive endpoint throttling
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_REQUESTS: int = 20

    # Initial administrator (seeded only when a password is configured)
    ADMIN_EMAIL: str = "admin@custodia.local"
    ADMIN_PASSWORD: str = ""

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    model_config = SettingsConfigDict(env_file=".env")

settings = Settings()
