from pydantic import BaseModel


class Settings(BaseModel):
    """Process-wide constants for the greeter service.

    Nothing here is read from the environment; tests build their own
    instance with a free port and short timeouts.
    """

    host: str = "0.0.0.0"
    port: int = 9090
    read_header_timeout: float = 10.0
    shutdown_timeout: float = 10.0
    version: str = "1.0.0"
    default_name: str = "Stranger"
