"""
Shared constants used across the platform.
"""

# Storage buckets
AUDIO_BUCKET = "audio"
COVERS_BUCKET = "covers"
AVATARS_BUCKET = "avatars"
ALL_BUCKETS = [AUDIO_BUCKET, COVERS_BUCKET, AVATARS_BUCKET]
AVATAR_FOLDER = "public"  # Folder inside the avatars bucket
COVER_KINDS = ("tracks", "playlists")
PUBLIC_OBJECT_PATH = "/storage/v1/object/public"

# Upload limits
AUDIO_LIMIT = 50 * 1024 * 1024  # 50MB
IMAGE_LIMIT = 5 * 1024 * 1024   # 5MB
STORAGE_CACHE_CONTROL = "3600"

# Listing defaults
DEFAULT_TRACKS_LIMIT = 100
EXPLORE_TRACKS_LIMIT = 200
POPULAR_USERS_LIMIT = 5
AVATAR_LIST_LIMIT = 100

# Auth
MIN_PASSWORD_LENGTH = 6
ACCESS_TOKEN_TTL = 60 * 60               # 1 hour
REFRESH_TOKEN_TTL = 60 * 60 * 24 * 1     # 1 day
PASSWORD_RESET_TTL = 60 * 60             # 1 hour
COOKIE_MAX_AGE = 60 * 60 * 24 * 1        # 1 day
REFRESH_THRESHOLD = 5 * 60               # 5 minutes

# Downloads
DEFAULT_DOWNLOAD_NAME = "cancion.mp3"
DEFAULT_NETWORK_TIMEOUT = 30  # seconds
DEFAULT_DOWNLOAD_CHUNK_SIZE = 8192  # bytes
NOTIFICATION_REMOVE_DELAY = 2  # seconds after completion

# Configuration paths
DEFAULT_DATA_DIR = "~/.local/share/zona-mix"
DEFAULT_DATABASE_FILENAME = "hub.db"
DEFAULT_STORAGE_DIRNAME = "storage"
DEFAULT_PORT = 5005
