"""Cross-cutting platform concerns: errors, authentication, readiness."""
