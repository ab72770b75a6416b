"""Core domain package for topicbridge.

Core holds topic bookkeeping, message correlation, and routing rules without
any Telethon or storage-specific code, keeping the bridge logic portable.
"""
