from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "LectureTree API"
    env: str = "dev"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./lecturetree.db"

    auth_skip_verify: bool = True

    llm_provider: str = "openai"
    llm_api_key: str = ""
    llm_model: str = "deepseek-chat"
    llm_base_url: str = "https://api.deepseek.com"
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_auth_token: str = ""
    anthropic_version: str = "2023-06-01"
    llm_timeout_seconds: int = 60
    llm_max_retries: int = 2
    llm_max_tokens: int = 4096

    max_pages: int = 200
    max_text_chars: int = 15000
    default_course_name: str = "未命名课程"
    default_lecture_title: str = "未命名主题"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
