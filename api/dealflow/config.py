import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dealflow.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "dealflow")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() == "true"
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN")
# 32 bytes, hex encoded; the dev default must never reach production
FILE_SECRET = os.getenv("FILE_SECRET", "00" * 32)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SERVER_PROTO = os.getenv("SERVER_PROTO", "https://")
SERVER_DOMAIN = os.getenv("SERVER_DOMAIN", "https://themarketx.com")

DOCUSIGN_URL = os.getenv("DOCUSIGN_URL", "https://demo.docusign.net/restapi/v2")
DOCUSIGN_USERNAME = os.getenv("DOCUSIGN_USERNAME", "")
DOCUSIGN_PASSWORD = os.getenv("DOCUSIGN_PASSWORD", "")
DOCUSIGN_ACCOUNT_ID = os.getenv("DOCUSIGN_ACCOUNT_ID", "")
DOCUSIGN_INTEGRATOR_KEY = os.getenv("DOCUSIGN_INTEGRATOR_KEY", "")
DOCUSIGN_TIMEOUT = float(os.getenv("DOCUSIGN_TIMEOUT", "30"))
DOCUSIGN_EXPIRE_DAYS = int(os.getenv("DOCUSIGN_EXPIRE_DAYS", "120"))
DOCUSIGN_STATUS_DELAY_MINUTES = int(os.getenv("DOCUSIGN_STATUS_DELAY_MINUTES", "15"))

DOCUSIGN_TEMPLATES = {
    "sell_engagement_letter": os.getenv("DOCUSIGN_SELL_ENGAGEMENT_LETTER", ""),
    "buy_engagement_letter": os.getenv("DOCUSIGN_BUY_ENGAGEMENT_LETTER", ""),
    "summary_of_terms": os.getenv("DOCUSIGN_BUY_SUMMARY_OF_TERMS", ""),
    "de_ppm": os.getenv("DOCUSIGN_BUY_DE_PPM", ""),
    "de_operating_agreement": os.getenv("DOCUSIGN_BUY_DE_OPERATING_AGREEMENT", ""),
    "de_subscription_agreement": os.getenv("DOCUSIGN_BUY_DE_SUBSCRIPTION_AGREEMENT", ""),
}
