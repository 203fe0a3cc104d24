"""Task orchestration and resumption engine."""
