"""
Invoice file storage.
Stores rendered invoice PDFs on local disk (UPLOADS_DIR) or in Cloudflare R2.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from .config import (
    INVOICE_STORAGE,
    PUBLIC_BASE_URL,
    R2_ACCESS_KEY_ID,
    R2_ACCOUNT_ID,
    R2_BUCKET_NAME,
    R2_PUBLIC_URL,
    R2_SECRET_ACCESS_KEY,
    UPLOADS_DIR,
)

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "invoices"


class InvoiceStorageError(Exception):
    """Raised when a stored invoice file cannot be written or read back"""


def invoice_key(url_or_key: str) -> str:
    """Storage key for a stored file, given either its key or its public URL"""
    return f"{INVOICE_PREFIX}/{os.path.basename(url_or_key.split('?', 1)[0])}"


class LocalInvoiceStore:
    """Invoice PDFs under UPLOADS_DIR/invoices, served from /uploads"""

    def __init__(self, base_dir: str = UPLOADS_DIR, base_url: str = PUBLIC_BASE_URL):
        self.base_dir = Path(base_dir)
        self.base_url = base_url.rstrip("/")

    def save(self, filename: str, data: bytes) -> str:
        key = invoice_key(filename)
        path = self.base_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"✅ Saved invoice PDF locally: {path}")
        return f"{self.base_url}/uploads/{key}"

    def read(self, url: str) -> bytes:
        path = self.base_dir / invoice_key(url)
        try:
            return path.read_bytes()
        except OSError as e:
            raise InvoiceStorageError(f"Invoice file not found: {path}") from e


def get_r2_client():
    """Get configured boto3 client for Cloudflare R2"""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


class R2InvoiceStore:
    """Invoice PDFs in the R2 bucket under invoices/"""

    def __init__(self, client=None, bucket: str = R2_BUCKET_NAME, public_url: Optional[str] = R2_PUBLIC_URL):
        self.client = client or get_r2_client()
        self.bucket = bucket
        self.public_url = (public_url or "").rstrip("/")

    def save(self, filename: str, data: bytes) -> str:
        key = invoice_key(filename)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="application/pdf",
            )
        except ClientError as e:
            logger.error(f"❌ Failed to upload invoice PDF to R2 {key}: {e}")
            raise InvoiceStorageError(str(e)) from e

        logger.info(f"✅ Uploaded invoice PDF to R2: {key}")
        return f"{self.public_url}/{key}" if self.public_url else key

    def read(self, url: str) -> bytes:
        key = invoice_key(url)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            logger.error(f"❌ Failed to read invoice PDF from R2 {key}: {e}")
            raise InvoiceStorageError(str(e)) from e


def get_invoice_store():
    """Store selected by INVOICE_STORAGE ("local" or "r2")"""
    if INVOICE_STORAGE == "r2":
        return R2InvoiceStore()
    return LocalInvoiceStore()
