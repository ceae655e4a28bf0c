import re
import secrets
from itsdangerous import URLSafeSerializer
from .config import SECRET_KEY

TOKEN_BYTES = 32
TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")

def make_token(payload: dict) -> str:
    s = URLSafeSerializer(SECRET_KEY, salt="session")
    return s.dumps(payload)

def read_token(token: str) -> dict:
    s = URLSafeSerializer(SECRET_KEY, salt="session")
    return s.loads(token)

def create_file_token_name(base: str, content_type: str | None) -> tuple[str, str]:
    """Issue a one-time download token and a filename suggestion.

    The extension is the content type's subtype; generic binary content gets
    no extension.
    """
    token = secrets.token_hex(TOKEN_BYTES)
    if not content_type or content_type == "application/octet-stream":
        return token, base
    return token, f"{base}.{content_type.rsplit('/', 1)[-1]}"

def is_download_token(value: str) -> bool:
    return bool(value) and TOKEN_RE.match(value) is not None

_ROMAN = [
    (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"), (100, "C"), (90, "XC"),
    (50, "L"), (40, "XL"), (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
]

def format_roman(num: int) -> str:
    out = []
    for value, numeral in _ROMAN:
        while num >= value:
            out.append(numeral)
            num -= value
    return "".join(out)

def format_money(amount: float) -> str:
    return f"${amount:,.0f}"
