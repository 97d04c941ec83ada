from __future__ import annotations
from dataclasses import dataclass

# ====== App identity (used by API metadata + email footers) ======
APP_NAME: str = "TeamHub"
APP_VERSION: str = "1.2.0"
SUPPORT_EMAIL: str = "support@teamhub.local"

@dataclass
class Settings:
    # Sessions
    session_timeout_hours: int = 8          # access token lifetime
    refresh_timeout_days: int = 30          # refresh token lifetime
    # Invitations
    invitation_ttl_days: int = 7
    client_url: str = "http://localhost:5173"   # base for links embedded in emails
    # Outgoing mail (disabled = log only)
    mail_enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_use_ssl: bool = True
    smtp_username: str = ""
    smtp_password: str = ""
    mail_from: str = "TeamHub <no-reply@teamhub.local>"
