"""
Lab Proctor Configuration Settings

Timing constants mirror the candidate page cadence:
- Recording flush and analysis tick every 5 seconds
- 20 second face registration window
- 5 warnings before a non-exempt session is terminated
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Configuration for the proctoring service and session controller."""
    
    # API Settings
    APP_NAME: str = "Lab Proctor Service"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    SERVICE_LOG_DIR: str = "./service-logs"
    
    # Storage Settings
    DATABASE_URL: str = "sqlite:///./labproctor.db"
    RECORD_DIR: str = "./record"
    LOGS_DIR: str = "./logs"
    
    # Classifier Settings (OpenAI vision model)
    OPENAI_API_KEY: Optional[str] = None
    CLASSIFIER_MODEL: str = "gpt-4o"
    CLASSIFIER_TIMEOUT_SECONDS: float = 30.0
    
    # Scoring Policy
    PASSING_SCORE: int = 85
    PASS_MARK: int = 70
    
    # Violation Policy
    WARNING_THRESHOLD: int = 5
    EXEMPT_COURSE_IDS: List[str] = []
    BANNER_SECONDS: float = 10.0
    IDENTITY_BANNER_SECONDS: float = 15.0
    
    # Session Cadence
    RECORDING_INTERVAL_SECONDS: float = 5.0
    RECORDING_FPS: float = 2.0
    ANALYSIS_INTERVAL_SECONDS: float = 5.0
    CAMERA_WEIGHT: float = 0.7  # 70% camera / 30% screen
    FACE_REGISTRATION_SECONDS: float = 20.0
    STARTING_DURATION_SECONDS: float = 10.0
    JPEG_QUALITY: int = 60
    
    # Controller -> Service Gateway
    GATEWAY_BASE_URL: str = "http://localhost:8001"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    
    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
