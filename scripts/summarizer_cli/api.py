"""Summarizer admin CLI API client - mockable for testing."""
import json
import os
from pathlib import Path
from typing import Optional
from urllib.parse import quote
from urllib.request import Request, urlopen
from urllib.error import HTTPError, URLError


# Config paths
DEFAULT_URL = "http://localhost:8000"
CONFIG_DIR = Path.home() / ".summarizer"
CONFIG_FILE = CONFIG_DIR / "config.yaml"


class APIError(Exception):
    """API error with status code and details."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Error {status_code}: {detail}")


class ConfigError(Exception):
    """Configuration error (missing keys, etc)."""
    pass


class ConnectionError(Exception):
    """Connection error."""
    pass


def load_config() -> dict:
    """Load config from ~/.summarizer/config.yaml."""
    if not CONFIG_FILE.exists():
        return {}
    config = {}
    with open(CONFIG_FILE) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and ":" in line:
                key, value = line.split(":", 1)
                config[key.strip()] = value.strip()
    return config


def save_config(config: dict):
    """Save config to ~/.summarizer/config.yaml."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_FILE, "w") as f:
        for key, value in config.items():
            f.write(f"{key}: {value}\n")
    CONFIG_FILE.chmod(0o600)


def get_url() -> str:
    """Get backend URL from env or config."""
    return os.environ.get("SUMMARIZER_URL") or load_config().get("url") or DEFAULT_URL


def get_admin_key() -> str:
    """Get admin API key from env or config.

    Raises:
        ConfigError: If no admin key is configured
    """
    key = os.environ.get("ADMIN_API_KEY") or load_config().get("admin_api_key")
    if not key:
        raise ConfigError("ADMIN_API_KEY not found. Set with env var or 'summarizer config set admin_api_key'")
    return key


def get_admin_email() -> Optional[str]:
    """Operator name recorded in the server's audit trail, if configured."""
    return os.environ.get("SUMMARIZER_ADMIN_EMAIL") or load_config().get("admin_email")


def path_segment(value: str) -> str:
    """Quote a user id or setting key for use in a URL path."""
    return quote(value, safe="")


def _error_detail(e: HTTPError) -> str:
    """Pull a readable message out of an error response body."""
    try:
        error = json.loads(e.read().decode())
    except (ValueError, UnicodeDecodeError):
        return f"HTTP {e.code}"
    if not isinstance(error, dict):
        return str(error)
    # Structured AppError bodies carry error.message; HTTPException bodies carry detail
    if isinstance(error.get("error"), dict) and error["error"].get("message"):
        return error["error"]["message"]
    return str(error.get("detail", error))


def api_request(
    method: str,
    endpoint: str,
    data: dict = None,
    timeout: int = 30,
    base_url: str = None,
    api_key: str = None,
) -> dict:
    """Make an admin API request to the summarizer backend.

    Args:
        method: HTTP method (GET, POST, etc)
        endpoint: API endpoint (e.g., /api/admin/settings)
        data: Request body (will be JSON encoded)
        timeout: Request timeout in seconds
        base_url: Override base URL (for testing)
        api_key: Override admin key (for testing)

    Returns:
        Parsed JSON response

    Raises:
        APIError: On HTTP errors
        ConnectionError: On network errors
        ConfigError: If the admin key is not configured
    """
    url = f"{(base_url or get_url()).rstrip('/')}{endpoint}"
    key = api_key or get_admin_key()

    headers = {
        "Authorization": f"Bearer {key}",
        "Content-Type": "application/json",
    }
    admin_email = get_admin_email()
    if admin_email:
        headers["X-Admin-Email"] = admin_email

    body = json.dumps(data).encode() if data is not None else None
    req = Request(url, data=body, headers=headers, method=method)

    try:
        with urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except HTTPError as e:
        raise APIError(e.code, _error_detail(e))
    except URLError as e:
        raise ConnectionError(f"Connection error: {e.reason}")
