"""
deploygate: token-scoped image updates for Kubernetes Deployments.

Callers present a bearer token, the gateway asks the identity provider what the
token may touch, and only then patches a single container image.
"""
