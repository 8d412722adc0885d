"""tabscribe: record a media source and turn it into a timestamped Markdown transcript."""

__version__ = "0.1.0"
