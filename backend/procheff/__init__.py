"""ProCheff AI orchestration service."""
