"""Edge security layer: rate limiting, security headers and two-factor step-up."""

__version__ = "0.1.0"
