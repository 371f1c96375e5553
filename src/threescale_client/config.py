import os
from dataclasses import dataclass


@dataclass
class Config:
    """
    settings for a Client and its host application. Client.from_config
    reads backend_url and timeout only. log_level and log_json are meant
    for the embedding application to pass to setup_logging.
    """

    # backend_url: format "https://su1.3scale.net:443"
    # or "http://backend.local"
    backend_url: "str" = "https://su1.3scale.net:443"
    # request timeout in seconds
    timeout: "float" = 10.0
    log_level: "str" = "info"
    # render logs as JSON instead of the console format
    log_json: "bool" = False

    @classmethod
    def from_env(cls) -> "Config":
        defaults = cls()
        return cls(
            backend_url=os.environ.get("THREESCALE_BACKEND_URL", defaults.backend_url),
            timeout=float(os.environ.get("THREESCALE_TIMEOUT", defaults.timeout)),
            log_level=os.environ.get("THREESCALE_LOG_LEVEL", defaults.log_level),
            log_json=os.environ.get("THREESCALE_LOG_JSON", "").lower()
            in ("1", "true", "yes"),
        )
