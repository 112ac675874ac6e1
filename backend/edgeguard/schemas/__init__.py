# Schemas package init
"""
EdgeGuard — Schemas Package
============================

    - common.py: error envelope, success wrapper, health response
    - auth.py:   verified token claims
"""
