import os

from dotenv import load_dotenv
load_dotenv()

def _bool(name, default=False):
    """Parse a boolean environment variable with sensible defaults.

    Reads the environment variable `name` and interprets truthy values in a
    case-insensitive manner. Recognized truthy strings are: "1", "true",
    "yes", and "on". If the variable is unset, returns `default`.

    Args:
        name (str): Environment variable name to read.
        default (bool, optional): Value to return when the variable is unset.
            Defaults to False.

    Returns:
        bool: Parsed boolean value from the environment or the provided default.
    """
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in {"1","true","yes","on"}

def _list(name, sep=None):
    """Split an environment variable into a list of non-empty, stripped items."""
    v = os.getenv(name, "")
    return [x.strip() for x in v.split(sep) if x.strip()]

# Flask
FLASK_ENV = os.getenv("FLASK_ENV", "local")
FLASK_SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "")
FLASK_APP = os.getenv("FLASK_APP", "acmedelegate")
FLASK_DEBUG = _bool("FLASK_DEBUG", False)

# Storage
# ==========================================================================
CERT_STORAGE_PATH = os.getenv("CERT_STORAGE_PATH", ".lego")

# Database
# ==========================================================================
DBNAME = os.getenv("DBNAME", "")
DBHOST = os.getenv("DBHOST", "")
DBUSER = os.getenv("DBUSER", "")
DBPWD = os.getenv("DBPWD", "")
SQLALCHEMY_DATABASE_URI = os.getenv("SQLALCHEMY_DATABASE_URI") or (
    f"postgresql://{DBUSER}:{DBPWD}@{DBHOST}:5432/{DBNAME}" if all([DBUSER, DBPWD, DBHOST, DBNAME])
    else f"sqlite:///{os.path.abspath(os.path.join(CERT_STORAGE_PATH, 'acmedelegate.db'))}"
)
SQLALCHEMY_TRACK_MODIFICATIONS = _bool("SQLALCHEMY_TRACK_MODIFICATIONS", False)

# ACME (Lets Encrypt)
# ==========================================================================
ACME_EMAIL = os.getenv("ACME_EMAIL", "")
ACME_DIRECTORY_URL = os.getenv("ACME_DIRECTORY_URL", "https://acme-staging-v02.api.letsencrypt.org/directory")
DEFAULT_KEY_TYPE = os.getenv("DEFAULT_KEY_TYPE", "rsa4096")
CHALLENGE_TIMEOUT = int(os.getenv("CHALLENGE_TIMEOUT", "600"))
HTTP_TIMEOUT = int(os.getenv("HTTP_TIMEOUT", "30"))

# acme-dns (delegated DNS-TXT service)
# ==========================================================================
ACME_DNS_SERVER_URL = os.getenv("ACME_DNS_SERVER_URL", "")
ACME_DNS_ALLOW_FROM = _list("ACME_DNS_ALLOW_FROM", ",")
DNS_PROPAGATION_MIN_SECONDS = float(os.getenv("DNS_PROPAGATION_MIN_SECONDS", "20"))
DNS_PROPAGATION_MAX_SECONDS = float(os.getenv("DNS_PROPAGATION_MAX_SECONDS", "30"))

# DNS verification
# ==========================================================================
DNS_RESOLVER = os.getenv("DNS_RESOLVER", "")
DNS_TIMEOUT = float(os.getenv("DNS_TIMEOUT", "15"))

# Renewal
# ==========================================================================
RENEWAL_WINDOW_DAYS = int(os.getenv("RENEWAL_WINDOW_DAYS", "30"))
AUTO_CERTS = _list("AUTO_CERTS")

# Slack
# ==========================================================================
ENABLE_SLACK_NOTIFICATIONS = _bool("ENABLE_SLACK_NOTIFICATIONS", False)
SLACK_WEBHOOK_KEY = os.getenv("SLACK_WEBHOOK_KEY", "")
SLACK_WORKSPACE_ID = os.getenv("SLACK_WORKSPACE_ID", "")

# Other application values
# ==========================================================================
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s L%(lineno)d - %(levelname)s - %(message)s")
