"""OAuth authorization and access token caching."""
