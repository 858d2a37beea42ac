"""Request parsing, routing, error responses and response streaming for a web server that renders pages from SQL files."""

__version__ = "0.1.0"

__all__ = [
    "request_variables",
    "responses",
    "request_info",
    "static_content",
    "response_writer",
    "routing",
]