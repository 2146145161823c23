"""
GameOn Sync Service - real-time session and sync registry

Responsibilities:
- Track every live Socket.IO connection per user and platform
- Tournament subscriptions and their broadcast groups
- Fan out sync events to a user's sessions or a tournament's subscribers
- Device tokens and best-effort push notifications
- Sweep connections that went idle without a clean disconnect
"""
