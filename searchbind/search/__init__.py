# @TASK P2-T2.1 - Search package

"""Query translation, indexing and result hydration."""
