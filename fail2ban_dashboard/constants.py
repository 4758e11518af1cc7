__version__ = "0.1.0"
F2B_SOCKET_PATH = "/var/run/fail2ban/fail2ban.sock"
F2B_SUPPORTED_VERSIONS = ["0.11.1", "0.11.2", "1.0.1", "1.0.2", "1.1.0"]
SOCKET_CHUNK_SIZE = 1024
REFRESH_SECONDS_DEFAULT = 30
REFRESH_SECONDS_MIN = 10
REFRESH_SECONDS_MAX = 600
REFRESH_START_DELAY = 1.0
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
TRACE = 5
