from pydantic_settings import BaseSettings
from pydantic import Field


DEFAULT_AGENT_INSTRUCTIONS = (
    "You are a claims support agent on a phone call. Be empathetic, efficient and reassuring. "
    "Ask one question at a time and keep responses short. Never repeat the caller's details back; "
    "say \"I have that noted\" and move on. Use get_caller_info when you need the caller's number. "
    "Only call call_end once the caller says goodbye or has no further questions, "
    "and always say a brief closing before it runs."
)

DEFAULT_AGENT_GREETING = "Introduce yourself briefly and ask how you can help."


class Settings(BaseSettings):
    server_host: str = Field(default="0.0.0.0", env="SERVER_HOST")
    server_port: int = Field(default=8080, env="SERVER_PORT")
    stream_path: str = Field(default="/stream", env="STREAM_PATH")
    max_concurrent_calls: int = Field(default=10, env="MAX_CONCURRENT_CALLS")

    # Vobiz telephony API
    vobiz_auth_id: str = Field(default="", env="VOBIZ_AUTH_ID")
    vobiz_auth_token: str = Field(default="", env="VOBIZ_AUTH_TOKEN")
    vobiz_base_url: str = Field(default="https://api.vobiz.ai/api/v1/Account", env="VOBIZ_BASE_URL")
    vobiz_timeout_seconds: float = Field(default=10.0, env="VOBIZ_TIMEOUT_SECONDS")

    # OpenAI Realtime bridge (disabled when no key is set)
    openai_api_key: str = Field(default="", env="OPENAI_API_KEY")
    openai_realtime_model: str = Field(default="gpt-realtime-mini", env="OPENAI_REALTIME_MODEL")
    openai_voice: str = Field(default="alloy", env="OPENAI_VOICE")
    openai_transcription_model: str = Field(default="whisper-1", env="OPENAI_TRANSCRIPTION_MODEL")
    agent_instructions: str = Field(default=DEFAULT_AGENT_INSTRUCTIONS, env="AGENT_INSTRUCTIONS")
    agent_greeting: str = Field(default=DEFAULT_AGENT_GREETING, env="AGENT_GREETING")

    max_transcript_entries: int = Field(default=200, env="MAX_TRANSCRIPT_ENTRIES")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields in .env without raising errors

    @property
    def realtime_enabled(self) -> bool:
        return bool(self.openai_api_key)


settings = Settings()
