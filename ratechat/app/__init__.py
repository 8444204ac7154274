"""Server side of ratechat: HTTP API, rate limiter and message store."""
