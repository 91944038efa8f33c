"""
Bearer-token resolution for the gateway.

Design goals:
- The gateway never interprets tokens itself; the identity provider is the authority.
- One userinfo lookup per request, no caching of capability decisions.
- Response shape is chosen by configuration, never guessed from the payload.
"""
