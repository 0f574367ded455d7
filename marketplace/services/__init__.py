"""Application services for the connection flow."""
