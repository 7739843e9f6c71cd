"""Engine — run orchestration, background contenders, optional steps."""
