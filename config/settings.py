"""
Django settings for StudySharper.
"""

import os
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get(
    'DJANGO_SECRET_KEY',
    'django-insecure-q7m!v0c2studysharper-local-only-key-8x#p3k@w1z9r$e6t'
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get('DJANGO_DEBUG', 'True') == 'True'

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost 127.0.0.1 [::1]').split()

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    # Local apps
    'study',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database – PostgreSQL in production, SQLite for local development
_db_engine = os.environ.get('DB_ENGINE', 'sqlite3')
if _db_engine == 'postgresql':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ.get('DB_NAME', 'studysharper'),
            'USER': os.environ.get('DB_USER', 'studysharper'),
            'PASSWORD': os.environ.get('DB_PASSWORD', ''),
            'HOST': os.environ.get('DB_HOST', 'localhost'),
            'PORT': os.environ.get('DB_PORT', '5432'),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ---------------------------------------------------------------------------
# AI routing – provider tiers, budget and model selection
# ---------------------------------------------------------------------------
AI_PRIMARY_PROVIDER = os.environ.get('AI_PRIMARY_PROVIDER', 'openrouter')
AI_FALLBACK_PROVIDER = os.environ.get('AI_FALLBACK_PROVIDER', 'ollama')  # empty disables the fallback
AI_DAILY_BUDGET = os.environ.get('AI_DAILY_BUDGET', '5.00') or None  # empty = unmetered
AI_CHAT_MODEL = os.environ.get('AI_CHAT_MODEL', 'anthropic/claude-3-haiku')
AI_EMBEDDING_MODEL = os.environ.get('AI_EMBEDDING_MODEL', 'text-embedding-3-small')
AI_METER_EMBEDDINGS = os.environ.get('AI_METER_EMBEDDINGS', 'True') == 'True'
AI_REQUEST_TIMEOUT = float(os.environ.get('AI_REQUEST_TIMEOUT', '30'))
AI_DEFAULT_MAX_TOKENS = int(os.environ.get('AI_DEFAULT_MAX_TOKENS', '1000'))
AI_MAX_CONTEXT_TOKENS = int(os.environ.get('AI_MAX_CONTEXT_TOKENS', '3000'))

# Provider credentials
OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '')
OPENAI_ORGANIZATION_ID = os.environ.get('OPENAI_ORGANIZATION_ID', '')
OPENROUTER_API_KEY = os.environ.get('OPENROUTER_API_KEY', '')
GEMINI_API_KEY = os.environ.get('GEMINI_API_KEY', '')

# Local Ollama server
OLLAMA_BASE_URL = os.environ.get('OLLAMA_BASE_URL', 'http://localhost:11434')
OLLAMA_CHAT_MODEL = os.environ.get('OLLAMA_CHAT_MODEL', 'llama3.1:8b')
OLLAMA_EMBEDDING_MODEL = os.environ.get('OLLAMA_EMBEDDING_MODEL', 'nomic-embed-text')

# YAML prompt agents
AGENTS_DIR = Path(os.environ.get('AGENTS_DIR', BASE_DIR / 'agents'))

# Content chunking
CONTENT_MAX_CHUNK_TOKENS = int(os.environ.get('CONTENT_MAX_CHUNK_TOKENS', '512'))
CONTENT_CHUNK_OVERLAP = int(os.environ.get('CONTENT_CHUNK_OVERLAP', '50'))

# ---------------------------------------------------------------------------
# Vector store – in-process (memory) or Weaviate
# ---------------------------------------------------------------------------
VECTOR_STORE_BACKEND = os.environ.get('VECTOR_STORE_BACKEND', 'memory')
EMBEDDING_DIMENSIONS = int(os.environ.get('EMBEDDING_DIMENSIONS', '1536'))

WEAVIATE_ENABLED = os.environ.get('WEAVIATE_ENABLED', 'True') == 'True'
WEAVIATE_URL = os.environ.get('WEAVIATE_URL', 'localhost')
WEAVIATE_HTTP_PORT = int(os.environ.get('WEAVIATE_HTTP_PORT', '8080'))
WEAVIATE_GRPC_PORT = int(os.environ.get('WEAVIATE_GRPC_PORT', '50051'))
WEAVIATE_API_KEY = os.environ.get('WEAVIATE_API_KEY', '')

# ---------------------------------------------------------------------------
# Logging – one file per day, 7-day retention, stored in ./logs/
# ---------------------------------------------------------------------------
LOGS_DIR = BASE_DIR / 'logs'
LOGS_DIR.mkdir(exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} [{levelname}] {name} {module}.{funcName}:{lineno} – {message}',
            'style': '{',
            'datefmt': '%Y-%m-%d %H:%M:%S',
        },
        'simple': {
            'format': '{asctime} [{levelname}] {message}',
            'style': '{',
            'datefmt': '%Y-%m-%d %H:%M:%S',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
            'level': 'INFO',
        },
        'file_debug': {
            'class': 'logging.handlers.TimedRotatingFileHandler',
            'filename': str(LOGS_DIR / 'app.log'),
            'when': 'midnight',
            'interval': 1,
            'backupCount': 7,
            'encoding': 'utf-8',
            'formatter': 'verbose',
            'level': 'DEBUG',
        },
    },
    'root': {
        'handlers': ['console', 'file_debug'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {
            'handlers': ['console', 'file_debug'],
            'level': 'INFO',
            'propagate': False,
        },
        'study': {
            'handlers': ['console', 'file_debug'],
            'level': 'DEBUG',
            'propagate': False,
        },
        # Provider HTTP clients
        'httpx': {
            'handlers': ['file_debug'],
            'level': 'WARNING',
            'propagate': False,
        },
    },
}
