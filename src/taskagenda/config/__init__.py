"""config/ — pydantic-settings configuration for taskagenda."""
