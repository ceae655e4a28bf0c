"""Deal files in MinIO.

Everything under ``deals/`` is written encrypted; readers go through
``load_decrypted``. The content type is kept on the owning row, not on the
object.
"""
import io

from minio import Minio
from minio.error import S3Error

from .config import MINIO_ACCESS_KEY, MINIO_BUCKET, MINIO_ENDPOINT, MINIO_SECRET_KEY, MINIO_SECURE
from .crypto import decrypt_bytes, encrypt_bytes

_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=MINIO_SECURE,
)
_bucket_ready = False


def deal_file_key(deal_id: int, user_id: int, name: str) -> str:
    return f"deals/{deal_id}/{user_id}/{name}"


def ensure_bucket():
    global _bucket_ready
    if _bucket_ready:
        return
    if not _client.bucket_exists(MINIO_BUCKET):
        _client.make_bucket(MINIO_BUCKET)
    _bucket_ready = True


def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    _client.put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)


def get_bytes(key: str) -> bytes:
    resp = _client.get_object(MINIO_BUCKET, key)
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()


def object_exists(key: str) -> bool:
    try:
        _client.stat_object(MINIO_BUCKET, key)
    except S3Error:
        return False
    return True


def save_encrypted(key: str, data: bytes):
    put_bytes(key, encrypt_bytes(data))


def load_decrypted(key: str) -> bytes:
    return decrypt_bytes(get_bytes(key))
