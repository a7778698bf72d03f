"""Dispatch gateway for notifications, cross-service commands and verification.

Backend services hand the gateway commands and messages; it gates them behind
optional human confirmation, delivers over Telegram or email with fallback,
and issues attempt-limited OTP / magic-link verifications. All state lives in
Redis with TTLs.
"""

__version__ = "1.0.0"
