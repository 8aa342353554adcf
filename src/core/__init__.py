"""Core domain package for mangalink.

Core contains the linking-code protocol, session bookkeeping, and notification
dispatch without any Telegram or storage-specific code, keeping the business
logic portable.
"""
