"""observability/ — structlog configuration for taskagenda."""
