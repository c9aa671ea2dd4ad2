from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    db_url: str = Field(default="sqlite:///./streamchat.db")
    gemini_api_key: str | None = Field(default=None)
    gemini_model: str = Field(default="gemini-2.5-flash")
    temperature: float = Field(default=0.7)
    max_tokens: int = Field(default=8192)
    system_prompt: str = Field(default="You are a helpful assistant.")
    stream_timeout_seconds: float = Field(default=30.0)
    conversation_title_length: int = Field(default=50)
    max_message_length: int = Field(default=4000)
    api_base_url: str = Field(default="http://localhost:8000/api/v1")

    model_config = SettingsConfigDict(
        env_prefix="STREAMCHAT_",
        env_file=".env",
        extra="ignore",
    )


config = Config()
