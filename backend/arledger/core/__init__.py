"""Settings, persistence, logging and the API error scheme."""
