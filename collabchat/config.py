from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = "http://localhost:3000/api"
    socket_url: str = "ws://localhost:3000/ws"
    request_timeout: float = 15.0

    # Reconnect backoff for the realtime socket (seconds)
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_prefix": "COLLABCHAT_"}


settings = Settings()
