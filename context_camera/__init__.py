# =============================================================================
# Context Camera - Client Package
# =============================================================================
# This package contains the capture loop and its collaborators: frame
# sources, the image codec, the Moondream API client and context detection.
# Exactly one capture or API round trip is outstanding at any time.
# =============================================================================
