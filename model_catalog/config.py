"""
Configuration constants for the model catalog.
"""
import re

# --- File Type Definitions ---
MODEL_EXTS = {'.stl', '.obj', '.lys', '.3mf', '.3ds'}
IMAGE_EXTS = {'.png', '.jpg', '.jpeg', '.gif', '.webp', '.bmp'}

# --- Folder Classification ---
# Folder names that mark their *parent* as the model (variants, printing prep, etc.)
DEFAULT_IGNORED_FOLDERS = (
    "stl,obj,3mf,lys,base,bases,part,parts,piece,pieces,supported,unsupported,"
    "presupported,pre-supported,painted,unpainted,scaled,files"
)
# Also treated as ignored: miniature scale folders like "25mm", "32 mm"
SIZE_FOLDER_PATTERN = r'\d{2,3}\s*mm'

# Subfolders that usually hold preview renders
RENDER_DIR_RE = re.compile(r'^(0?renders?|imgs?|images?|pictures?|photos?)$', re.IGNORECASE)

# Directories categories stop at; depth counts from the root's children (depth 0)
DEFAULT_MIN_DEPTH = 2

# --- Search Bounds ---
MODEL_SEARCH_DEPTH = 5
THUMBNAIL_SEARCH_DEPTH = 3

# --- Settings Keys ---
SETTING_IGNORED_FOLDERS = "ignored_folder_names"
SETTING_MIN_DEPTH = "scanner_min_depth"
SETTING_EXCLUDED_FOLDERS = "excluded_folders"
SETTING_LAST_SCAN = "last_scan_at"
SETTING_AUTO_SCAN = "auto_scan_enabled"
SETTING_SCAN_HOUR = "scan_schedule_hour"

# --- Scheduler ---
DEFAULT_SCAN_HOUR = 3
SCHEDULER_INTERVAL_SEC = 60

# --- Merge ---
MERGED_SUFFIX = "_merged"

# --- Storage ---
DEFAULT_DB_NAME = "model_catalog.db"
LOG_FILE_NAME = "model_catalog.log"
