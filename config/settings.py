# config/settings.py
HOST        = "127.0.0.1"
MIN_PORT    = 45433
MAX_PORT    = 45533

CERT_DIR    = "config/certs"
KEY_PATH    = f"{CERT_DIR}/key"
CERT_PATH   = f"{CERT_DIR}/cert"
CA_PATHS    = []              # trusted client authorities (PEM files)
GENERATE_IF_MISSING = True

CERT_COMMON_NAME = "localhost"
CERT_DAYS        = 365
CERT_KEY_SIZE    = 2048

PORT_PROBE_ATTEMPTS = 64
HANDSHAKE_TIMEOUT   = 5.0
CLOSE_TIMEOUT       = 5.0

HTTP_PORT   = 8080

LOG_LEVEL   = "INFO"
LOG_FORMAT  = "%(asctime)s %(levelname)s %(message)s"
