"""
Global constants for the Visual Clutter node.
"""
from pathlib import Path

# Project Structure
PACKAGE_DIR = Path(__file__).parent.parent
CONFIGS_DIR = PACKAGE_DIR / "configs"
LOGS_DIR = Path.cwd() / "logs"
LOG_FILE_NAME = "visual_clutter.log"

# Capture
DEFAULT_FPS = 30
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_PIXEL_FORMAT = "BGRA"
CAMERA_WARMUP_FRAMES = 10
MAX_EMPTY_FRAMES = 50
SUPPORTED_ROTATIONS = (0, 90, 180, 270)

# Model variants
VARIANT_DETECTION = "detection"
VARIANT_SEGMENTATION = "segmentation"
MODEL_VARIANTS = (VARIANT_DETECTION, VARIANT_SEGMENTATION)

# Busy policies for the inference stage
POLICY_REPLACE = "replace"
POLICY_REJECT = "reject"
POLICY_BLOCK = "block"
BUSY_POLICIES = (POLICY_REPLACE, POLICY_REJECT, POLICY_BLOCK)

# Detection decoding
DEFAULT_CONFIDENCE = 0.5
DETECTION_BOX_FIELDS = 5  # x, y, w, h, objectness

# Segmentation adapter
DEFAULT_MASK_SIZE = (160, 160)
DEFAULT_BACKGROUND_SCORE = 0.25
BACKGROUND_LABEL = "background"

# Thread polling
QUEUE_POLL_SECONDS = 0.1
THREAD_JOIN_SECONDS = 2.0
