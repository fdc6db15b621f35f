import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./healthcare.db")

# Clerk Configuration
CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY")
CLERK_WEBHOOK_SECRET = os.getenv("CLERK_WEBHOOK_SECRET")
CLERK_API_URL = os.getenv("CLERK_API_URL", "https://api.clerk.com/v1")
# Frontend API JWKS endpoint, e.g. https://<instance>.clerk.accounts.dev/.well-known/jwks.json
CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL")
# PEM public key from the Clerk dashboard - enables networkless session verification
CLERK_JWT_KEY = os.getenv("CLERK_JWT_KEY")

# Stripe Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# Frontend base URL for redirects and links in emails
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# CORS - comma separated list of allowed origins
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000"
).split(",")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Mundoctor <facturacion@mundoctor.com>")

# Cache Configuration
REDIS_URL = os.getenv("REDIS_URL")
CACHE_DEFAULT_TTL = int(os.getenv("CACHE_DEFAULT_TTL", "300"))

# Invoice storage: "local" (UPLOADS_DIR) or "r2" (Cloudflare R2)
INVOICE_STORAGE = os.getenv("INVOICE_STORAGE", "local")
UPLOADS_DIR = os.getenv("UPLOADS_DIR", str(Path(__file__).resolve().parent.parent / "uploads"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")

# Cloudflare R2 Configuration
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "mundoctor")
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL")

# Issuer details snapshotted onto every invoice
COMPANY_NAME = os.getenv("COMPANY_NAME", "Mundoctor")
COMPANY_ADDRESS = os.getenv("COMPANY_ADDRESS", "Av. Reforma 123, Ciudad de México, CDMX 06600")
COMPANY_EMAIL = os.getenv("COMPANY_EMAIL", "facturacion@mundoctor.com")
COMPANY_PHONE = os.getenv("COMPANY_PHONE", "+52 55 1234 5678")
COMPANY_TAX_ID = os.getenv("COMPANY_TAX_ID", "MUN123456789")
