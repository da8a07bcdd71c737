"""核心同步逻辑."""
