import os


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() == 'true'


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    TESTING = False
    
    # Socket.IO
    CORS_ALLOWED_ORIGINS = os.getenv(
        'CORS_ALLOWED_ORIGINS',
        'http://localhost:3000,http://localhost:3001'
    ).split(',')
    SOCKETIO_ASYNC_MODE = os.getenv('SOCKETIO_ASYNC_MODE', 'threading')
    
    # Redis (optional message queue so other processes can emit to clients)
    REDIS_URL = os.getenv('REDIS_URL', '')
    SOCKETIO_MESSAGE_QUEUE = os.getenv('SOCKETIO_MESSAGE_QUEUE', REDIS_URL) or None
    
    # Session registry
    IDLE_TIMEOUT_SECONDS = int(os.getenv('IDLE_TIMEOUT_SECONDS', '300'))
    SWEEP_INTERVAL_SECONDS = int(os.getenv('SWEEP_INTERVAL_SECONDS', '300'))
    SWEEP_ENABLED = _env_flag('SWEEP_ENABLED', 'true')
    AUTO_JOIN_SUBSCRIPTIONS = _env_flag('AUTO_JOIN_SUBSCRIPTIONS')
    
    # Push notifications
    PUSH_PROVIDER = os.getenv('PUSH_PROVIDER', 'log')  # "log", "firebase" or "disabled"
    FIREBASE_CREDENTIALS = os.getenv('FIREBASE_CREDENTIALS', '')
    MAX_TOKENS_PER_PLATFORM = int(os.getenv('MAX_TOKENS_PER_PLATFORM', '5'))
    DEFAULT_NOTIFICATION_ICON = os.getenv('DEFAULT_NOTIFICATION_ICON', '/logo192.png')
    ALLOW_TEST_NOTIFICATIONS = True


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False
    ALLOW_TEST_NOTIFICATIONS = False
    PUSH_PROVIDER = os.getenv('PUSH_PROVIDER', 'firebase')


class TestingConfig(Config):
    DEBUG = False
    TESTING = True
    SWEEP_ENABLED = False
    SOCKETIO_MESSAGE_QUEUE = None
    PUSH_PROVIDER = 'log'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
