# @TASK P4-T4.1 - API package
