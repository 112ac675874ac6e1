# Services package init
"""
EdgeGuard — Services Layer
===========================

What:  Admission and verification logic used by the middleware stages.
How:   Plain classes with no HTTP dependencies, so they can be unit-tested
       directly.

Service Inventory:
    - RateLimiter (abstract): interface for per-client admission control
    - DistributedWindowLimiter: Redis sorted-set sliding window (preferred)
    - LocalTokenBucketLimiter: in-process token buckets (fallback)
    - TokenVerifier: signed-token verification with PyJWT
"""
