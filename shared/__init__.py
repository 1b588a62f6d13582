# =============================================================================
# Context Camera - Shared Package
# =============================================================================
# Wire-level data contracts shared by the API client and its tests.
# =============================================================================
