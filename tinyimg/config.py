# config.py
"""
Configuration constants for tinyimg
"""

# Quality search bounds (inclusive)
MIN_QUALITY = 1
MAX_QUALITY = 100

# Maximum tolerated perceptual difference between source and output
DEFAULT_EPS = 0.02

# Output naming when the source is kept (``/k``)
KEEP_SUFFIX = "_tiny"

# Downscale the reference before searching when larger than this; None keeps the size
MAX_IMAGE_DIMENSION = None

# WebP compression effort: 0-6 (6 = smallest, slower)
WEBP_METHOD = 6

# JPEG chroma subsampling used for every encode
JPEG_SUBSAMPLING = "4:2:0"

# ZopfliPNG effort: iteration counts for small and large images, and every
# PNG filter strategy (0-4, minsum, entropy, predefined, brute force)
ZOPFLI_ITERATIONS = 60
ZOPFLI_ITERATIONS_LARGE = 20
ZOPFLI_FILTER_STRATEGIES = "01234mepb"

# Logging
LOGGER_NAME = "tinyimg"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
LOG_MAX_BYTES = 1_048_576
LOG_BACKUP_COUNT = 5
