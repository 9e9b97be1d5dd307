from chanwatch.substrate.channel_store import ChannelStore

__all__ = ["ChannelStore"]
